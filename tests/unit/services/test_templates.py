"""Unit tests for RoleTemplateHandler."""

import pytest

from grantsync.core.config import settings
from grantsync.exceptions import NotFoundError
from grantsync.models.kinds import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_TEMPLATE_BINDING,
    PROJECT_ROLE_TEMPLATE_BINDING,
    ROLE,
    ROLE_TEMPLATE,
)

PRTB = PROJECT_ROLE_TEMPLATE_BINDING
CRTB = CLUSTER_ROLE_TEMPLATE_BINDING

SERVICES_RULE = {"verbs": ["get"], "apiGroups": [""], "resources": ["services"]}


def add_rule(rule):
    def mutate(current):
        current["rules"] = list(current.get("rules") or []) + [rule]
        return True

    return mutate


@pytest.mark.unit
@pytest.mark.reconcile
class TestRoleTemplateHandler:
    """Test refresh of dependents and cleanup on deletion."""

    @pytest.fixture(autouse=True)
    def setup(self, make_template, make_namespace, pod_read_rule):
        make_template("base", rules=[pod_read_rule])
        make_template("dev", refs=["base"])
        make_template("unrelated", rules=[pod_read_rule])
        make_namespace("n1", project="p1")

    @pytest.fixture
    def granted(self, reconciler, make_binding, make_cluster_binding, refetch):
        project = make_binding("b1", "dev")
        cluster = make_cluster_binding("c1", "dev")
        reconciler.sync(PRTB, refetch(PRTB, project))
        reconciler.sync(CRTB, refetch(CRTB, cluster))

    def test_dependents(self, template_handler, granted, make_binding):
        make_binding("b2", "unrelated")
        make_binding("broken", "missing")

        dependents = template_handler.dependents("base", {})

        assert sorted(binding.name for binding, _ in dependents) == ["b1", "c1"]

    def test_change_refreshes_flattened_roles(
        self, store, template_handler, granted, pod_read_rule
    ):
        """Test a referenced template change reaches the root's roles."""
        store.conditional_update(ROLE_TEMPLATE, "base", add_rule(SERVICES_RULE))

        refreshed = template_handler.refresh_dependents("base")

        assert refreshed == 2
        assert store.get(ROLE, "dev", "n1")["rules"] == [pod_read_rule, SERVICES_RULE]
        assert store.get(CLUSTER_ROLE, "dev")["rules"] == [pod_read_rule, SERVICES_RULE]

    def test_sync_attaches_finalizer(self, store, template_handler):
        template_handler.sync("base", store.get(ROLE_TEMPLATE, "base"))

        finalizers = store.get(ROLE_TEMPLATE, "base")["metadata"]["finalizers"]
        assert finalizers == [settings.template_finalizer]

    def test_deletion_removes_materialized_roles(self, store, template_handler, granted):
        template_handler.sync("dev", store.get(ROLE_TEMPLATE, "dev"))
        store.delete(ROLE_TEMPLATE, "dev")

        template_handler.sync("dev", store.get(ROLE_TEMPLATE, "dev"))

        assert store.get_or_none(ROLE, "dev", "n1") is None
        assert store.get_or_none(CLUSTER_ROLE, "dev") is None
        assert store.get_or_none(ROLE_TEMPLATE, "dev") is None

    def test_deletion_leaves_other_roles(self, store, template_handler, granted, make_binding, reconciler, refetch):
        other = make_binding("b2", "unrelated")
        reconciler.sync(PRTB, refetch(PRTB, other))
        template_handler.sync("dev", store.get(ROLE_TEMPLATE, "dev"))
        store.delete(ROLE_TEMPLATE, "dev")

        template_handler.sync("dev", store.get(ROLE_TEMPLATE, "dev"))

        assert store.get_or_none(ROLE, "unrelated", "n1") is not None

    def test_builtin_roles_are_never_removed(self, store, template_handler, make_template):
        """Test only roles labelled as materialized are deleted."""
        store.create(CLUSTER_ROLE, {"metadata": {"name": "view"}, "rules": []})
        make_template("view", builtin=True)
        template_handler.sync("view", store.get(ROLE_TEMPLATE, "view"))
        store.delete(ROLE_TEMPLATE, "view")

        template_handler.sync("view", store.get(ROLE_TEMPLATE, "view"))

        assert store.get_or_none(CLUSTER_ROLE, "view") is not None

    def test_gone_template(self, store, template_handler):
        writes = len(store.writes)

        template_handler.sync("dev", None)

        assert len(store.writes) == writes

    def test_binding_pass_during_deletion_recreates_nothing(
        self, store, template_handler, reconciler, granted
    ):
        """Test a binding resynced between role removal and release grants no role."""
        template_handler.sync("dev", store.get(ROLE_TEMPLATE, "dev"))
        store.delete(ROLE_TEMPLATE, "dev")
        template_handler.remove_roles("dev")
        binding = store.get(PRTB, "b1", "p1")

        with pytest.raises(NotFoundError):
            reconciler.sync(PRTB, binding)

        assert store.get_or_none(ROLE, "dev", "n1") is None
        template_handler.finalizers.release(ROLE_TEMPLATE, store.get(ROLE_TEMPLATE, "dev"))
        assert store.get_or_none(ROLE_TEMPLATE, "dev") is None
        assert store.list(ROLE) == []
        assert store.list(CLUSTER_ROLE) == []
