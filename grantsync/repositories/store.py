"""Object store contract consumed by the reconcilers."""

import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from grantsync.metrics import object_writes
from grantsync.models.kinds import ResourceKind
from grantsync.models.resources import metadata

logger = get_logger(__name__)

# Mutates the passed copy in place; returns False when nothing had to change
Mutator = Callable[[Dict[str, Any]], bool]


def matches_labels(body: Dict[str, Any], selector: Optional[Dict[str, str]]) -> bool:
    if not selector:
        return True
    labels = metadata(body).get("labels") or {}
    return all(labels.get(key) == value for key, value in selector.items())


def format_selector(selector: Optional[Dict[str, str]]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted((selector or {}).items()))


class ObjectStore(ABC):
    """Typed get/list/create/update/delete over every kind the controller touches.

    ``update`` is conditional: the object's ``metadata.resourceVersion`` is the
    expected version and a stale one raises ConflictError.
    """

    @abstractmethod
    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Return the object or raise NotFoundError."""

    @abstractmethod
    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """List objects, across all namespaces when namespace is None."""

    @abstractmethod
    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create the object or raise AlreadyExistsError."""

    @abstractmethod
    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the object, raising ConflictError on a stale version."""

    @abstractmethod
    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        """Delete the object or raise NotFoundError."""

    # ------------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------------

    def get_or_none(
        self, kind: ResourceKind, name: str, namespace: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        try:
            return self.get(kind, name, namespace)
        except NotFoundError:
            return None

    def conditional_update(
        self,
        kind: ResourceKind,
        name: str,
        mutate: Mutator,
        namespace: Optional[str] = None,
        current: Optional[Dict[str, Any]] = None,
        attempts: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Fetch, mutate and write back, re-fetching on a version conflict.

        ``current`` may carry an already fetched copy for the first attempt.
        When ``mutate`` reports no change the object is returned unwritten.
        ConflictError surfaces after ``attempts`` stale writes; NotFoundError
        surfaces immediately.
        """
        attempts = attempts or settings.conflict_attempts

        for attempt in range(1, attempts + 1):
            if current is None:
                current = self.get(kind, name, namespace)

            desired = copy.deepcopy(current)
            if not mutate(desired):
                return current

            try:
                updated = self.update(kind, desired)
                object_writes.labels(kind=kind.kind, operation="update").inc()
                logger.info(f"Updated {kind} {_display(name, namespace)}")
                return updated
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.debug(
                    f"Conflict updating {kind} {name}, retrying ({attempt}/{attempts})"
                )
                current = None

        raise ConflictError(kind.kind, name, namespace)

    def ensure(
        self, kind: ResourceKind, desired: Dict[str, Any], reconcile: Mutator
    ) -> Dict[str, Any]:
        """Create ``desired`` if absent, otherwise bring the stored copy in line.

        ``reconcile`` receives a copy of the stored object and returns whether
        it changed anything, so a converged object costs no write.
        """
        meta = metadata(desired)
        name, namespace = meta["name"], meta.get("namespace")

        current = self.get_or_none(kind, name, namespace)
        if current is None:
            try:
                created = self.create(kind, desired)
                object_writes.labels(kind=kind.kind, operation="create").inc()
                logger.info(f"Created {kind} {_display(name, namespace)}")
                return created
            except AlreadyExistsError:
                logger.debug(f"{kind} {_display(name, namespace)} appeared concurrently")

        return self.conditional_update(kind, name, reconcile, namespace, current=current)

    def delete_if_exists(
        self, kind: ResourceKind, name: str, namespace: Optional[str] = None
    ) -> bool:
        """Delete, treating an already absent object as success."""
        try:
            self.delete(kind, name, namespace)
        except NotFoundError:
            return False
        object_writes.labels(kind=kind.kind, operation="delete").inc()
        logger.info(f"Deleted {kind} {_display(name, namespace)}")
        return True


def _display(name: str, namespace: Optional[str]) -> str:
    return f"{namespace}/{name}" if namespace else name
