"""Object kinds and typed resource views."""

from .kinds import (
    API_GROUP,
    API_VERSION,
    BINDING_KINDS,
    CLUSTER,
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    CLUSTER_ROLE_TEMPLATE_BINDING,
    NAMESPACE,
    OWNED_KINDS,
    POD_SECURITY_POLICY,
    POD_SECURITY_POLICY_TEMPLATE,
    PROJECT_ROLE_TEMPLATE_BINDING,
    ROLE,
    ROLE_BINDING,
    ROLE_TEMPLATE,
    ResourceKind,
)
from .resources import (
    BindingScope,
    BindingState,
    PolicyRule,
    RoleTemplate,
    RoleTemplateBinding,
    Subject,
    binding_object_name,
)

__all__ = [
    "API_GROUP",
    "API_VERSION",
    "ResourceKind",
    "NAMESPACE",
    "ROLE",
    "ROLE_BINDING",
    "CLUSTER_ROLE",
    "CLUSTER_ROLE_BINDING",
    "POD_SECURITY_POLICY",
    "ROLE_TEMPLATE",
    "POD_SECURITY_POLICY_TEMPLATE",
    "PROJECT_ROLE_TEMPLATE_BINDING",
    "CLUSTER_ROLE_TEMPLATE_BINDING",
    "CLUSTER",
    "BINDING_KINDS",
    "OWNED_KINDS",
    "BindingScope",
    "BindingState",
    "PolicyRule",
    "RoleTemplate",
    "RoleTemplateBinding",
    "Subject",
    "binding_object_name",
]
