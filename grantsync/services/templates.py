"""RoleTemplate changes: refresh dependent grants, clean up on deletion."""

from typing import Any, Dict, List, Optional, Tuple

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import ErrorCollector, GrantSyncError
from grantsync.models.kinds import BINDING_KINDS, CLUSTER_ROLE, ROLE, ROLE_TEMPLATE
from grantsync.models.resources import BindingState, RoleTemplateBinding, metadata
from grantsync.repositories.store import ObjectStore
from grantsync.services.bindings import BindingReconciler
from grantsync.services.finalizers import FinalizerLifecycle
from grantsync.services.resolver import TemplateCache

logger = get_logger(__name__)


class RoleTemplateHandler:
    """Keep materialized roles in step with the templates they come from.

    A template change re-runs ``ensure`` for every live binding whose
    resolution visits the template, directly or through references. A
    deleted template takes the roles materialized from it along.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconciler: BindingReconciler,
        finalizers: Optional[FinalizerLifecycle] = None,
        template_label: Optional[str] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.finalizers = finalizers or FinalizerLifecycle(
            store, finalizer=settings.template_finalizer
        )
        self.template_label = template_label or settings.template_label

    def sync(self, name: str, body: Optional[Dict[str, Any]]) -> None:
        state = self.finalizers.state_of(body)
        if state == BindingState.GONE:
            return
        if state == BindingState.TERMINATING:
            self.remove_roles(name)
            self.finalizers.release(ROLE_TEMPLATE, body)
            return

        self.finalizers.attach(ROLE_TEMPLATE, body)
        self.refresh_dependents(name)

    def dependents(
        self, name: str, cache: TemplateCache
    ) -> List[Tuple[RoleTemplateBinding, Dict[str, Any]]]:
        """Live bindings whose resolution visits template ``name``."""
        found = []
        for kind in BINDING_KINDS:
            for body in self.store.list(kind):
                if self.reconciler.finalizers.state_of(body) != BindingState.ACTIVE:
                    continue
                binding = RoleTemplateBinding.from_dict(kind, body)
                if not binding.role_template_name:
                    continue
                try:
                    resolved = self.reconciler.resolver.resolve(binding.role_template_name, cache)
                except GrantSyncError as e:
                    # the binding's own reconciliation reports this
                    logger.debug(f"Skipping {binding.kind} {binding.key}: {e}")
                    continue
                if name in resolved.template_names:
                    found.append((binding, body))
        return found

    def refresh_dependents(self, name: str) -> int:
        cache: TemplateCache = {}
        errors = ErrorCollector()
        dependents = self.dependents(name, cache)

        for binding, body in dependents:
            with errors.attempt(f"refresh {binding.kind} {binding.key} after role template {name} changed"):
                self.reconciler.ensure(binding, body, cache)

        errors.raise_first()
        if dependents:
            logger.info(
                f"Refreshed {len(dependents)} bindings after role template {name} changed",
                extra={"template": name},
            )
        return len(dependents)

    def remove_roles(self, name: str) -> int:
        """Delete every Role and ClusterRole materialized from template ``name``."""
        selector = {self.template_label: name}
        errors = ErrorCollector()
        removed = 0

        for kind in (ROLE, CLUSTER_ROLE):
            for role in self.store.list(kind, labels=selector):
                meta = metadata(role)
                with errors.attempt(f"delete {kind} {meta['name']}"):
                    if self.store.delete_if_exists(kind, meta["name"], meta.get("namespace")):
                        removed += 1

        errors.raise_first()
        return removed
