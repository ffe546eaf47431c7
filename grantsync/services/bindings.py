"""Binding reconciliation: fan a role template grant out to its scopes."""

from typing import Any, Dict, List, Optional, Set, Tuple

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.exceptions import AlreadyExistsError, ConfigurationError, ErrorCollector
from grantsync.metrics import object_writes, reconcile_duration, reconcile_errors
from grantsync.models.kinds import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    RBAC_GROUP,
    ROLE,
    ROLE_BINDING,
    ResourceKind,
)
from grantsync.models.resources import (
    BindingScope,
    BindingState,
    RoleTemplateBinding,
    binding_object_name,
    object_key,
)
from grantsync.repositories.index import ProjectIndex
from grantsync.repositories.store import ObjectStore
from grantsync.services.finalizers import FinalizerLifecycle
from grantsync.services.psp import PodSecurityPolicyPropagator
from grantsync.services.resolver import (
    ResolvedRoleTemplate,
    TemplateCache,
    TemplateResolver,
)
from grantsync.services.roles import RoleMaterializer

logger = get_logger(__name__)

# None stands for the cluster scope
Scope = Optional[str]


class BindingReconciler:
    """Drive one ProjectRoleTemplateBinding or ClusterRoleTemplateBinding.

    Active bindings go through ``ensure``; terminating bindings have their
    owned objects removed before the finalizer is released; gone bindings
    need nothing. Every step is idempotent, so repeated and out-of-order
    notifications converge on the same objects.
    """

    def __init__(
        self,
        store: ObjectStore,
        index: ProjectIndex,
        resolver: Optional[TemplateResolver] = None,
        roles: Optional[RoleMaterializer] = None,
        psps: Optional[PodSecurityPolicyPropagator] = None,
        finalizers: Optional[FinalizerLifecycle] = None,
        owner_label: Optional[str] = None,
    ):
        self.store = store
        self.index = index
        self.owner_label = owner_label or settings.owner_label
        self.resolver = resolver or TemplateResolver(store)
        self.roles = roles or RoleMaterializer(store)
        self.psps = psps or PodSecurityPolicyPropagator(store, self.owner_label)
        self.finalizers = finalizers or FinalizerLifecycle(
            store, owner_label=self.owner_label
        )

    def sync(
        self,
        kind: ResourceKind,
        body: Optional[Dict[str, Any]],
        cache: Optional[TemplateCache] = None,
    ) -> BindingState:
        """Reconcile one binding notification and report the state acted on."""
        state = self.finalizers.state_of(body)

        if state == BindingState.GONE:
            if body is not None:
                self.index.forget_binding(*object_key(body))
            return state

        binding = RoleTemplateBinding.from_dict(kind, body)
        with reconcile_duration.labels(kind=kind.kind).time():
            if state == BindingState.TERMINATING:
                self.finalizers.finalize(binding, body)
                self.index.forget_binding(binding.namespace, binding.name)
            else:
                self.index.observe_binding(binding)
                self.ensure(binding, body, cache)

        return state

    def ensure(
        self,
        binding: RoleTemplateBinding,
        body: Dict[str, Any],
        cache: Optional[TemplateCache] = None,
    ) -> None:
        self.finalizers.attach(binding.kind, body)

        try:
            binding.validate()
        except ConfigurationError as e:
            reconcile_errors.labels(error_type="configuration").inc()
            logger.warning(f"{e}. Skipping.", extra={"binding": binding.key})
            return

        # a missing role template is fatal for this pass
        resolved = self.resolver.resolve(binding.role_template_name, cache)

        kind = self._binding_kind(binding)
        scopes = self.fan_out(binding)
        if not scopes:
            logger.info(
                f"Project {binding.project_name} has no namespaces, nothing to grant for {binding.key}",
                extra={"binding": binding.key},
            )
            self._prune(kind, binding, set())
            return

        errors = ErrorCollector()

        with errors.attempt(f"ensure roles for role template {resolved.name}"):
            self.roles.ensure(
                resolved, None if binding.scope == BindingScope.CLUSTER else scopes
            )
        with errors.attempt(f"ensure PodSecurityPolicies for {binding.key}"):
            self.psps.ensure(resolved.rules, binding.uid)

        desired: Set[Tuple[Optional[str], str]] = set()
        for scope in scopes:
            for role_kind, role_name in self._role_refs(binding, resolved):
                grant = self._grant(kind, binding, role_kind, role_name, scope)
                desired.add(object_key(grant))
                with errors.attempt(
                    f"ensure {kind} for role {role_name} and {binding.subject.name} in {scope or 'cluster'}"
                ):
                    self._ensure_grant(kind, grant)

        if not errors:
            with errors.attempt(f"prune stale {kind}s of {binding.key}"):
                self._prune(kind, binding, desired)

        errors.raise_first()

    def fan_out(self, binding: RoleTemplateBinding) -> List[Scope]:
        """Scopes the grant must reach: the cluster, or the project's namespaces."""
        if binding.scope == BindingScope.CLUSTER:
            return [None]
        return list(self.index.namespaces_for_project(binding.project_name))

    # ------------------------------------------------------------------------
    # Grant objects
    # ------------------------------------------------------------------------

    @staticmethod
    def _binding_kind(binding: RoleTemplateBinding) -> ResourceKind:
        if binding.scope == BindingScope.CLUSTER:
            return CLUSTER_ROLE_BINDING
        return ROLE_BINDING

    @staticmethod
    def _role_refs(
        binding: RoleTemplateBinding, resolved: ResolvedRoleTemplate
    ) -> List[Tuple[str, str]]:
        refs = []
        if resolved.materialized_name is not None:
            role_kind = ROLE if binding.scope == BindingScope.PROJECT else CLUSTER_ROLE
            refs.append((role_kind.kind, resolved.materialized_name))
        # builtins are always pre-existing cluster roles
        refs.extend((CLUSTER_ROLE.kind, name) for name in resolved.builtin_names)
        return refs

    def _grant(
        self,
        kind: ResourceKind,
        binding: RoleTemplateBinding,
        role_kind: str,
        role_name: str,
        scope: Scope,
    ) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "name": binding_object_name(role_name, binding.subject, binding.uid),
            "labels": {self.owner_label: binding.uid},
        }
        if scope is not None:
            meta["namespace"] = scope

        return {
            "apiVersion": kind.api_version,
            "kind": kind.kind,
            "metadata": meta,
            "subjects": [binding.subject.to_dict()],
            "roleRef": {"apiGroup": RBAC_GROUP, "kind": role_kind, "name": role_name},
        }

    def _ensure_grant(self, kind: ResourceKind, desired: Dict[str, Any]) -> None:
        namespace, name = object_key(desired)

        current = self.store.get_or_none(kind, name, namespace)
        if current is not None:
            if _grant_of(current) == _grant_of(desired):
                return
            # roleRef is immutable, so a changed grant is replaced
            logger.info(f"{kind} {name} no longer matches its binding, recreating")
            self.store.delete_if_exists(kind, name, namespace)

        try:
            self.store.create(kind, desired)
        except AlreadyExistsError:
            logger.debug(f"{kind} {name} already exists")
            return
        object_writes.labels(kind=kind.kind, operation="create").inc()
        logger.info(
            f"Created {kind} {name} in {namespace or 'cluster'} for role {desired['roleRef']['name']}"
        )

    def _prune(
        self,
        kind: ResourceKind,
        binding: RoleTemplateBinding,
        desired: Set[Tuple[Optional[str], str]],
    ) -> None:
        for owned in self.store.list(kind, labels={self.owner_label: binding.uid}):
            key = object_key(owned)
            if key not in desired:
                self.store.delete_if_exists(kind, key[1], key[0])


def _grant_of(body: Dict[str, Any]) -> Tuple:
    role_ref = body.get("roleRef") or {}
    subjects = tuple(
        (s.get("kind"), s.get("name"), s.get("namespace"))
        for s in body.get("subjects") or []
    )
    return role_ref.get("kind"), role_ref.get("name"), subjects
