"""Role materialization for resolved role templates."""

from typing import Any, Dict, List, Optional, Sequence

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import ErrorCollector
from grantsync.models.kinds import CLUSTER_ROLE, ROLE, ResourceKind
from grantsync.models.resources import PolicyRule, labels_of, rules_from
from grantsync.repositories.store import ObjectStore
from grantsync.services.resolver import ResolvedRoleTemplate

logger = get_logger(__name__)


class RoleMaterializer:
    """Ensure a Role or ClusterRole exists with exactly the resolved rules.

    Roles are named after their template and labelled with it so template
    deletion can find them. Builtin templates are never written; their
    ClusterRole is only checked for existence.
    """

    def __init__(self, store: ObjectStore, template_label: Optional[str] = None):
        self.store = store
        self.template_label = template_label or settings.template_label

    def ensure(
        self, resolved: ResolvedRoleTemplate, namespaces: Optional[Sequence[str]] = None
    ) -> None:
        """Materialize ``resolved`` into every namespace, or cluster-wide for None."""
        for name in resolved.builtin_names:
            self.check_builtin(name)

        if resolved.materialized_name is None:
            return

        if namespaces is None:
            self._ensure_role(CLUSTER_ROLE, resolved.name, None, resolved.rules)
            return

        errors = ErrorCollector()
        for namespace in namespaces:
            with errors.attempt(f"ensure Role {namespace}/{resolved.name}"):
                self._ensure_role(ROLE, resolved.name, namespace, resolved.rules)
        errors.raise_first()

    def check_builtin(self, name: str) -> bool:
        """Warn when a builtin role is missing; it may be provisioned out-of-band."""
        if self.store.get_or_none(CLUSTER_ROLE, name) is None:
            logger.warning(f"Builtin role {name} does not exist yet, binding it anyway")
            return False
        return True

    def _ensure_role(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str],
        rules: List[PolicyRule],
    ) -> Dict[str, Any]:
        desired_rules = [rule.to_dict() for rule in rules]
        meta: Dict[str, Any] = {"name": name, "labels": {self.template_label: name}}
        if namespace:
            meta["namespace"] = namespace

        def reconcile(current: Dict[str, Any]) -> bool:
            changed = False
            if rules_from(current.get("rules")) != list(rules):
                current["rules"] = desired_rules
                changed = True
            if labels_of(current).get(self.template_label) != name:
                current["metadata"]["labels"] = {
                    **labels_of(current),
                    self.template_label: name,
                }
                changed = True
            return changed

        return self.store.ensure(
            kind,
            {
                "apiVersion": kind.api_version,
                "kind": kind.kind,
                "metadata": meta,
                "rules": desired_rules,
            },
            reconcile,
        )
