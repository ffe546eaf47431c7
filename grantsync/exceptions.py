"""Error taxonomy shared by the object store and the reconcilers."""

from contextlib import contextmanager
from typing import List, Optional, Sequence

from grantsync.core.logging import get_logger

logger = get_logger(__name__)


class GrantSyncError(Exception):
    """Base exception for grantsync errors"""


# ============================================================================
# STORE ERRORS
# ============================================================================


class StoreError(GrantSyncError):
    """Error reported by the object store"""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None, message: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(message or f"{self.__class__.__name__}: {self.key}")

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class NotFoundError(StoreError):
    """Object does not exist"""


class AlreadyExistsError(StoreError):
    """Object with the same name already exists"""


class ConflictError(StoreError):
    """Update carried a stale resource version"""


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================


class ConfigurationError(GrantSyncError):
    """Malformed binding or template; retrying will not help"""


class CycleError(ConfigurationError):
    """Role template references form a cycle"""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"role template cycle: {' -> '.join(self.cycle)}")


# ============================================================================
# AGGREGATION
# ============================================================================


class ErrorCollector:
    """Run independent steps to completion and re-raise the first failure.

    Used for fan-out passes where one namespace failing must not prevent the
    remaining namespaces from being attempted. Successful steps are kept.
    """

    def __init__(self):
        self.errors: List[Exception] = []

    @contextmanager
    def attempt(self, description: str):
        try:
            yield
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            self.errors.append(e)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_first(self) -> None:
        if not self.errors:
            return
        if len(self.errors) > 1:
            logger.warning(
                f"{len(self.errors)} steps failed, surfacing the first: {self.errors[0]}"
            )
        raise self.errors[0]
