"""Reconciliation services package."""

from .bindings import BindingReconciler
from .finalizers import FinalizerLifecycle
from .namespaces import NamespaceMembershipWatcher
from .psp import PodSecurityPolicyPropagator
from .resolver import ResolvedRoleTemplate, TemplateResolver
from .roles import RoleMaterializer
from .templates import RoleTemplateHandler

__all__ = [
    "TemplateResolver",
    "ResolvedRoleTemplate",
    "RoleMaterializer",
    "PodSecurityPolicyPropagator",
    "FinalizerLifecycle",
    "BindingReconciler",
    "NamespaceMembershipWatcher",
    "RoleTemplateHandler",
]
