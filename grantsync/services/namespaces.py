"""Namespace membership: default project assignment and retroactive grants."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import ErrorCollector
from grantsync.models.kinds import CLUSTER, NAMESPACE, PROJECT_ROLE_TEMPLATE_BINDING
from grantsync.models.resources import (
    BindingState,
    RoleTemplateBinding,
    is_deletion_requested,
    labels_of,
    metadata,
)
from grantsync.repositories.index import ProjectIndex
from grantsync.repositories.store import ObjectStore
from grantsync.services.bindings import BindingReconciler

logger = get_logger(__name__)

DEFAULT_NAMESPACE_ASSIGNED = "DefaultNamespaceAssigned"


def condition_is_true(body: Dict[str, Any], condition_type: str) -> bool:
    for condition in (body.get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition.get("status") == "True"
    return False


def set_condition_true(body: Dict[str, Any], condition_type: str) -> bool:
    """Mark a status condition True; returns False if it already was."""
    status = body.get("status") or {}
    conditions: List[Dict[str, Any]] = list(status.get("conditions") or [])
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    for condition in conditions:
        if condition.get("type") == condition_type:
            if condition.get("status") == "True":
                return False
            condition.update({"status": "True", "lastUpdateTime": now})
            break
    else:
        conditions.append({"type": condition_type, "status": "True", "lastUpdateTime": now})

    status["conditions"] = conditions
    body["status"] = status
    return True


class NamespaceMembershipWatcher:
    """React to namespace creation and updates.

    The bootstrap namespace is assigned to the default project once per
    cluster, guarded by the cluster's DefaultNamespaceAssigned condition.
    A namespace carrying a project label then receives every live grant of
    that project without waiting for the bindings themselves to change.
    """

    def __init__(
        self,
        store: ObjectStore,
        index: ProjectIndex,
        reconciler: BindingReconciler,
        cluster_name: Optional[str] = None,
        bootstrap_namespace: Optional[str] = None,
        default_project: Optional[str] = None,
    ):
        self.store = store
        self.index = index
        self.reconciler = reconciler
        self.cluster_name = cluster_name or settings.cluster_name
        self.bootstrap_namespace = bootstrap_namespace or settings.bootstrap_namespace
        self.default_project = default_project or settings.default_project_name

    @property
    def project_label(self) -> str:
        return self.index.project_label

    def sync(self, name: str, body: Optional[Dict[str, Any]]) -> None:
        if body is None or is_deletion_requested(body):
            self.index.forget_namespace(name)
            return

        body = self.ensure_default_namespace_assigned(body)
        self.index.observe_namespace(body)
        self.grant_project_bindings(body)

    def ensure_default_namespace_assigned(self, body: Dict[str, Any]) -> Dict[str, Any]:
        name = metadata(body)["name"]
        if name != self.bootstrap_namespace:
            return body

        cluster = self.store.get(CLUSTER, self.cluster_name)
        if condition_is_true(cluster, DEFAULT_NAMESPACE_ASSIGNED):
            return body

        if not labels_of(body).get(self.project_label):

            def assign(current: Dict[str, Any]) -> bool:
                if labels_of(current).get(self.project_label):
                    return False
                current["metadata"]["labels"] = {
                    **labels_of(current),
                    self.project_label: self.default_project,
                }
                return True

            body = self.store.conditional_update(NAMESPACE, name, assign, current=body)
            logger.info(f"Assigned namespace {name} to project {self.default_project}")

        self.store.conditional_update(
            CLUSTER,
            self.cluster_name,
            lambda current: set_condition_true(current, DEFAULT_NAMESPACE_ASSIGNED),
            current=cluster,
        )
        return body

    def grant_project_bindings(self, body: Dict[str, Any]) -> int:
        """Re-run ``ensure`` for every live binding of the namespace's project."""
        project = labels_of(body).get(self.project_label)
        if not project:
            return 0

        errors = ErrorCollector()
        cache: Dict[str, Any] = {}
        granted = 0

        for namespace, name in self.index.bindings_for_project(project):
            binding_body = self.store.get_or_none(PROJECT_ROLE_TEMPLATE_BINDING, name, namespace)
            if binding_body is None:
                self.index.forget_binding(namespace, name)
                continue
            if self.reconciler.finalizers.state_of(binding_body) != BindingState.ACTIVE:
                continue

            binding = RoleTemplateBinding.from_dict(PROJECT_ROLE_TEMPLATE_BINDING, binding_body)
            with errors.attempt(f"grant {binding.key} to namespace {metadata(body)['name']}"):
                self.reconciler.ensure(binding, binding_body, cache)
                granted += 1

        errors.raise_first()
        return granted
