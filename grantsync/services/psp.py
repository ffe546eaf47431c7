"""PodSecurityPolicy propagation from templates named in resolved rules."""

import copy
from typing import Any, Dict, Iterable, List, Optional

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import ErrorCollector, StoreError
from grantsync.models.kinds import POD_SECURITY_POLICY, POD_SECURITY_POLICY_TEMPLATE
from grantsync.models.resources import PSP_RESOURCE, PolicyRule, labels_of, metadata
from grantsync.repositories.store import ObjectStore

logger = get_logger(__name__)


class PodSecurityPolicyPropagator:
    """Materialize PodSecurityPolicies referenced by ``use`` rules.

    Template lookups are optional: a missing or unreadable template is logged
    and skipped so the rest of the reconciliation proceeds.
    """

    def __init__(self, store: ObjectStore, owner_label: Optional[str] = None):
        self.store = store
        self.owner_label = owner_label or settings.owner_label

    @staticmethod
    def referenced_policies(rules: Iterable[PolicyRule]) -> List[str]:
        names: Dict[str, None] = {}
        for rule in rules:
            if rule.names_resource(PSP_RESOURCE):
                names.update(dict.fromkeys(rule.resource_names))
        return list(names)

    def load_templates(self, names: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        specs = {}
        for name in names:
            try:
                template = self.store.get(POD_SECURITY_POLICY_TEMPLATE, name)
            except StoreError as e:
                logger.warning(f"Couldn't find PodSecurityPolicyTemplate {name}. Skipping. Error: {e}")
                continue
            specs[name] = template.get("spec") or {}
        return specs

    def ensure(self, rules: Iterable[PolicyRule], owner_uid: Optional[str] = None) -> List[str]:
        """Create or update a PodSecurityPolicy per resolvable referenced template."""
        specs = self.load_templates(self.referenced_policies(rules))

        errors = ErrorCollector()
        for name, spec in specs.items():
            with errors.attempt(f"ensure PodSecurityPolicy {name}"):
                self._ensure_policy(name, spec, owner_uid)
        errors.raise_first()

        return list(specs)

    def refresh_from_template(self, name: str, body: Optional[Dict[str, Any]]) -> None:
        """Copy a changed template spec into the managed policy of the same name.

        Policies nobody has referenced yet are left for the bindings to create.
        """
        if body is None:
            return
        current = self.store.get_or_none(POD_SECURITY_POLICY, name)
        if current is None or self.owner_label not in labels_of(current):
            return
        self.store.conditional_update(
            POD_SECURITY_POLICY,
            name,
            _copy_spec(body.get("spec") or {}),
            current=current,
        )

    def _ensure_policy(self, name: str, spec: Dict[str, Any], owner_uid: Optional[str]):
        meta: Dict[str, Any] = {"name": name}
        if owner_uid:
            meta["labels"] = {self.owner_label: owner_uid}

        return self.store.ensure(
            POD_SECURITY_POLICY,
            {
                "apiVersion": POD_SECURITY_POLICY.api_version,
                "kind": POD_SECURITY_POLICY.kind,
                "metadata": meta,
                "spec": copy.deepcopy(spec),
            },
            _copy_spec(spec),
        )


def _copy_spec(spec: Dict[str, Any]):
    def reconcile(current: Dict[str, Any]) -> bool:
        if current.get("spec") == spec:
            return False
        logger.debug(f"PodSecurityPolicy {metadata(current)['name']} spec drifted from template")
        current["spec"] = copy.deepcopy(spec)
        return True

    return reconcile
