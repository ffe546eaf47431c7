"""Finalizer lifecycle: attach on creation, clean up and release on deletion."""

from typing import Any, Dict, Optional

from grantsync.core.config import settings
from grantsync.core.logging import get_logger, log_event
from grantsync.exceptions import ErrorCollector, NotFoundError
from grantsync.models.kinds import OWNED_KINDS, ResourceKind
from grantsync.models.resources import (
    BindingState,
    RoleTemplateBinding,
    finalizers_of,
    metadata,
)
from grantsync.repositories.store import ObjectStore

logger = get_logger(__name__)


class FinalizerLifecycle:
    """Owns one finalizer token.

    Only this token is ever added or removed; finalizers placed by other
    systems are carried through every update untouched.
    """

    def __init__(self, store: ObjectStore, finalizer: Optional[str] = None, owner_label: Optional[str] = None):
        self.store = store
        self.finalizer = finalizer or settings.binding_finalizer
        self.owner_label = owner_label or settings.owner_label

    def state_of(self, body: Optional[Dict[str, Any]]) -> BindingState:
        return BindingState.of(body, self.finalizer)

    def attach(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Add the finalizer with a single conditional update; no-op if present."""
        if self.finalizer in finalizers_of(body):
            return body

        def add(current: Dict[str, Any]) -> bool:
            finalizers = finalizers_of(current)
            if self.finalizer in finalizers:
                return False
            current["metadata"]["finalizers"] = finalizers + [self.finalizer]
            return True

        meta = metadata(body)
        updated = self.store.conditional_update(
            kind, meta["name"], add, namespace=meta.get("namespace"), current=body
        )
        logger.info(f"Attached finalizer {self.finalizer} to {kind} {meta['name']}")
        return updated

    def release(self, kind: ResourceKind, body: Dict[str, Any]) -> None:
        """Remove only this finalizer, letting the store complete the deletion."""
        if self.finalizer not in finalizers_of(body):
            return

        def remove(current: Dict[str, Any]) -> bool:
            finalizers = finalizers_of(current)
            if self.finalizer not in finalizers:
                return False
            current["metadata"]["finalizers"] = [f for f in finalizers if f != self.finalizer]
            return True

        meta = metadata(body)
        try:
            self.store.conditional_update(
                kind, meta["name"], remove, namespace=meta.get("namespace"), current=body
            )
        except NotFoundError:
            return
        logger.info(f"Released finalizer {self.finalizer} from {kind} {meta['name']}")

    def finalize(self, binding: RoleTemplateBinding, body: Dict[str, Any]) -> int:
        """Delete every object owned by ``binding``, then release the finalizer.

        Owned objects are located through the owner label in all namespaces,
        so namespaces that have since left the project are covered as well.
        The finalizer stays in place while any deletion is failing.
        """
        selector = {self.owner_label: binding.uid}
        errors = ErrorCollector()
        deleted = 0

        # nothing can carry an empty owner label value
        kinds = OWNED_KINDS if binding.uid else ()
        for kind in kinds:
            with errors.attempt(f"list {kind} owned by {binding.key}"):
                for owned in self.store.list(kind, labels=selector):
                    meta = metadata(owned)
                    with errors.attempt(f"delete {kind} {meta['name']}"):
                        if self.store.delete_if_exists(kind, meta["name"], meta.get("namespace")):
                            deleted += 1

        errors.raise_first()

        log_event(
            logger,
            "info",
            "binding_cleaned_up",
            binding=binding.key,
            kind=binding.kind.kind,
            deleted=deleted,
        )
        self.release(binding.kind, body)
        return deleted
