"""Unit tests for the project secondary index."""

import pytest

from grantsync.core.config import settings
from grantsync.models.kinds import CLUSTER_ROLE_TEMPLATE_BINDING, PROJECT_ROLE_TEMPLATE_BINDING
from grantsync.models.resources import RoleTemplateBinding


def namespace(name, project=None, deleting=False):
    meta = {"name": name}
    if project:
        meta["labels"] = {settings.project_label: project}
    if deleting:
        meta["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {"metadata": meta}


def binding(name, project, kind=PROJECT_ROLE_TEMPLATE_BINDING, ns="p1"):
    return RoleTemplateBinding.from_dict(
        kind,
        {
            "metadata": {"name": name, "namespace": ns, "uid": f"uid-{name}"},
            "subject": {"kind": "User", "name": "user1"},
            "roleTemplateName": "readonly",
            "projectName": project,
        },
    )


@pytest.mark.unit
class TestNamespaceIndex:
    """Test project -> namespaces tracking."""

    def test_observe(self, index):
        index.observe_namespace(namespace("n2", "p1"))
        index.observe_namespace(namespace("n1", "p1"))
        index.observe_namespace(namespace("n3", "p2"))

        assert index.namespaces_for_project("p1") == ["n1", "n2"]
        assert index.namespaces_for_project("p2") == ["n3"]
        assert index.project_of("n1") == "p1"

    def test_unknown_project(self, index):
        assert index.namespaces_for_project("missing") == []

    def test_unlabeled_namespace_is_ignored(self, index):
        index.observe_namespace(namespace("n1"))

        assert index.project_of("n1") is None

    def test_relabel_moves_namespace(self, index):
        index.observe_namespace(namespace("n1", "p1"))
        index.observe_namespace(namespace("n1", "p2"))

        assert index.namespaces_for_project("p1") == []
        assert index.namespaces_for_project("p2") == ["n1"]

    def test_label_removed(self, index):
        index.observe_namespace(namespace("n1", "p1"))
        index.observe_namespace(namespace("n1"))

        assert index.namespaces_for_project("p1") == []

    def test_terminating_namespace_drops_out(self, index):
        """Test nothing is fanned out into a namespace being deleted."""
        index.observe_namespace(namespace("n1", "p1"))
        index.observe_namespace(namespace("n1", "p1", deleting=True))

        assert index.namespaces_for_project("p1") == []

    def test_forget(self, index):
        index.observe_namespace(namespace("n1", "p1"))
        index.forget_namespace("n1")
        index.forget_namespace("never-seen")

        assert index.namespaces_for_project("p1") == []


@pytest.mark.unit
class TestBindingIndex:
    """Test project -> bindings tracking."""

    def test_observe(self, index):
        index.observe_binding(binding("b1", "p1"))
        index.observe_binding(binding("b2", "p1"))

        assert index.bindings_for_project("p1") == [("p1", "b1"), ("p1", "b2")]

    def test_cluster_bindings_are_not_indexed(self, index):
        index.observe_binding(binding("b1", "p1", kind=CLUSTER_ROLE_TEMPLATE_BINDING))

        assert index.bindings_for_project("p1") == []

    def test_project_change_moves_binding(self, index):
        index.observe_binding(binding("b1", "p1"))
        index.observe_binding(binding("b1", "p2"))

        assert index.bindings_for_project("p1") == []
        assert index.bindings_for_project("p2") == [("p1", "b1")]

    def test_forget(self, index):
        index.observe_binding(binding("b1", "p1"))
        index.forget_binding("p1", "b1")

        assert index.bindings_for_project("p1") == []


@pytest.mark.unit
class TestIndexPriming:
    """Test startup priming from the store."""

    def test_prime(self, store, index, make_namespace, make_binding):
        make_namespace("n1", "p1", observe=False)
        make_namespace("n2", observe=False)
        make_binding("b1", "readonly", project="p1")

        index.prime(store)

        assert index.namespaces_for_project("p1") == ["n1"]
        assert index.bindings_for_project("p1") == [("p1", "b1")]
        assert index.stats() == {"namespaces": 1, "bindings": 1, "projects": 1}
