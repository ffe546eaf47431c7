"""Object kinds the controller reads and writes."""

from dataclasses import dataclass

API_GROUP = "grantsync.io"
API_VERSION = "v1"

RBAC_GROUP = "rbac.authorization.k8s.io"


@dataclass(frozen=True)
class ResourceKind:
    """A typed handle on one kind of stored object."""

    api_version: str
    kind: str
    plural: str
    namespaced: bool

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    def __str__(self) -> str:
        return self.kind


# Native objects
NAMESPACE = ResourceKind("v1", "Namespace", "namespaces", namespaced=False)
ROLE = ResourceKind(f"{RBAC_GROUP}/v1", "Role", "roles", namespaced=True)
ROLE_BINDING = ResourceKind(
    f"{RBAC_GROUP}/v1", "RoleBinding", "rolebindings", namespaced=True
)
CLUSTER_ROLE = ResourceKind(
    f"{RBAC_GROUP}/v1", "ClusterRole", "clusterroles", namespaced=False
)
CLUSTER_ROLE_BINDING = ResourceKind(
    f"{RBAC_GROUP}/v1", "ClusterRoleBinding", "clusterrolebindings", namespaced=False
)
POD_SECURITY_POLICY = ResourceKind(
    "policy/v1beta1", "PodSecurityPolicy", "podsecuritypolicies", namespaced=False
)

# Templates and grants
ROLE_TEMPLATE = ResourceKind(
    f"{API_GROUP}/{API_VERSION}", "RoleTemplate", "roletemplates", namespaced=False
)
POD_SECURITY_POLICY_TEMPLATE = ResourceKind(
    f"{API_GROUP}/{API_VERSION}",
    "PodSecurityPolicyTemplate",
    "podsecuritypolicytemplates",
    namespaced=False,
)
PROJECT_ROLE_TEMPLATE_BINDING = ResourceKind(
    f"{API_GROUP}/{API_VERSION}",
    "ProjectRoleTemplateBinding",
    "projectroletemplatebindings",
    namespaced=True,
)
CLUSTER_ROLE_TEMPLATE_BINDING = ResourceKind(
    f"{API_GROUP}/{API_VERSION}",
    "ClusterRoleTemplateBinding",
    "clusterroletemplatebindings",
    namespaced=True,
)
CLUSTER = ResourceKind(
    f"{API_GROUP}/{API_VERSION}", "Cluster", "clusters", namespaced=False
)

BINDING_KINDS = (PROJECT_ROLE_TEMPLATE_BINDING, CLUSTER_ROLE_TEMPLATE_BINDING)

# Objects a binding owns, located through the owner label
OWNED_KINDS = (ROLE_BINDING, CLUSTER_ROLE_BINDING, POD_SECURITY_POLICY)
