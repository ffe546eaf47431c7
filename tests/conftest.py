"""Pytest configuration and shared fixtures for grantsync tests."""

from typing import Any, Dict, List, Optional

import pytest

from grantsync.core.config import settings
from grantsync.models.kinds import (
    CLUSTER,
    CLUSTER_ROLE_TEMPLATE_BINDING,
    NAMESPACE,
    POD_SECURITY_POLICY_TEMPLATE,
    PROJECT_ROLE_TEMPLATE_BINDING,
    ROLE_TEMPLATE,
    ResourceKind,
)
from grantsync.repositories.index import ProjectIndex
from grantsync.repositories.memory import InMemoryObjectStore
from grantsync.services.bindings import BindingReconciler
from grantsync.services.namespaces import NamespaceMembershipWatcher
from grantsync.services.templates import RoleTemplateHandler

# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def store():
    """Fresh in-memory object store per test."""
    return InMemoryObjectStore()


@pytest.fixture
def index():
    """Empty project index."""
    return ProjectIndex()


@pytest.fixture
def reconciler(store, index):
    """Binding reconciler wired to the in-memory store."""
    return BindingReconciler(store, index)


@pytest.fixture
def watcher(store, index, reconciler):
    """Namespace membership watcher for cluster 'local'."""
    return NamespaceMembershipWatcher(
        store,
        index,
        reconciler,
        cluster_name="local",
        bootstrap_namespace="default",
        default_project="default",
    )


@pytest.fixture
def template_handler(store, reconciler):
    """RoleTemplate handler sharing the reconciler."""
    return RoleTemplateHandler(store, reconciler)


# ============================================================================
# Object Factories
# ============================================================================


@pytest.fixture
def make_template(store):
    """Create a RoleTemplate."""

    def _make(
        name: str,
        rules: Optional[List[Dict[str, Any]]] = None,
        refs: Optional[List[str]] = None,
        builtin: bool = False,
    ) -> Dict[str, Any]:
        return store.create(
            ROLE_TEMPLATE,
            {
                "metadata": {"name": name},
                "rules": rules or [],
                "roleTemplateNames": refs or [],
                "builtin": builtin,
            },
        )

    return _make


@pytest.fixture
def make_namespace(store, index):
    """Create a namespace, optionally in a project, and index it."""

    def _make(name: str, project: Optional[str] = None, observe: bool = True) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"name": name}
        if project:
            meta["labels"] = {settings.project_label: project}
        body = store.create(NAMESPACE, {"metadata": meta})
        if observe:
            index.observe_namespace(body)
        return body

    return _make


@pytest.fixture
def make_binding(store):
    """Create a project or cluster role template binding."""

    def _make(
        name: str,
        template: str,
        subject: str = "user1",
        project: Optional[str] = "p1",
        namespace: str = "p1",
        kind: ResourceKind = PROJECT_ROLE_TEMPLATE_BINDING,
        finalizers: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "metadata": {"name": name, "namespace": namespace},
            "subject": {"kind": "User", "name": subject},
            "roleTemplateName": template,
        }
        if finalizers:
            body["metadata"]["finalizers"] = list(finalizers)
        if kind == PROJECT_ROLE_TEMPLATE_BINDING and project:
            body["projectName"] = project
        return store.create(kind, body)

    return _make


@pytest.fixture
def make_cluster_binding(make_binding):
    """Create a ClusterRoleTemplateBinding."""

    def _make(name: str, template: str, subject: str = "user1", namespace: str = "local"):
        return make_binding(
            name,
            template,
            subject=subject,
            project=None,
            namespace=namespace,
            kind=CLUSTER_ROLE_TEMPLATE_BINDING,
        )

    return _make


@pytest.fixture
def make_psp_template(store):
    """Create a PodSecurityPolicyTemplate."""

    def _make(name: str, spec: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return store.create(
            POD_SECURITY_POLICY_TEMPLATE,
            {"metadata": {"name": name}, "spec": spec or {"privileged": False}},
        )

    return _make


@pytest.fixture
def cluster(store):
    """The 'local' Cluster object without any conditions."""
    return store.create(CLUSTER, {"metadata": {"name": "local"}, "status": {}})


# ============================================================================
# Rule Fixtures
# ============================================================================


@pytest.fixture
def pod_read_rule():
    return {"verbs": ["get", "list", "watch"], "apiGroups": [""], "resources": ["pods"]}


@pytest.fixture
def deployment_read_rule():
    return {
        "verbs": ["get", "list", "watch"],
        "apiGroups": ["apps", "extensions"],
        "resources": ["deployments"],
    }


@pytest.fixture
def psp_use_rule():
    return {
        "verbs": ["use"],
        "apiGroups": ["extensions"],
        "resources": ["podsecuritypolicies"],
        "resourceNames": ["psp-1"],
    }


# ============================================================================
# Helpers
# ============================================================================


@pytest.fixture
def refetch(store):
    """Re-read an object the way the dispatcher does before each pass."""

    def _refetch(kind: ResourceKind, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        meta = body["metadata"]
        return store.get_or_none(kind, meta["name"], meta.get("namespace"))

    return _refetch


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "store: Object store tests")
    config.addinivalue_line("markers", "reconcile: Reconciliation tests")
    config.addinivalue_line("markers", "kopf: Operator wiring tests")
