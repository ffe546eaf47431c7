"""Secondary index: project -> namespaces and project -> bindings."""

import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

from grantsync.core.config import settings
from grantsync.core.logging import get_logger
from grantsync.metrics import indexed_bindings, indexed_namespaces
from grantsync.models.kinds import NAMESPACE, PROJECT_ROLE_TEMPLATE_BINDING
from grantsync.models.resources import (
    RoleTemplateBinding,
    is_deletion_requested,
    labels_of,
    metadata,
)

logger = get_logger(__name__)

BindingKey = Tuple[Optional[str], str]


class ProjectIndex:
    """Keeps project membership queryable in O(matches).

    Fed by every namespace and project binding observation; terminating
    namespaces drop out of the index because nothing new may be written
    into them.
    """

    def __init__(self, project_label: Optional[str] = None):
        self.project_label = project_label or settings.project_label
        self._lock = threading.RLock()
        self._namespaces: Dict[str, Set[str]] = defaultdict(set)
        self._namespace_project: Dict[str, str] = {}
        self._bindings: Dict[str, Set[BindingKey]] = defaultdict(set)
        self._binding_project: Dict[BindingKey, str] = {}

    # ------------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------------

    def observe_namespace(self, body: Dict[str, Any]) -> None:
        name = metadata(body)["name"]
        project = labels_of(body).get(self.project_label)
        if not project or is_deletion_requested(body):
            self.forget_namespace(name)
            return

        with self._lock:
            previous = self._namespace_project.get(name)
            if previous == project:
                return
            if previous is not None:
                self._discard(self._namespaces, previous, name)
            self._namespace_project[name] = project
            self._namespaces[project].add(name)
            indexed_namespaces.set(len(self._namespace_project))
        logger.debug(f"Indexed namespace {name} under project {project}")

    def forget_namespace(self, name: str) -> None:
        with self._lock:
            project = self._namespace_project.pop(name, None)
            if project is not None:
                self._discard(self._namespaces, project, name)
            indexed_namespaces.set(len(self._namespace_project))

    def namespaces_for_project(self, project: str) -> List[str]:
        with self._lock:
            return sorted(self._namespaces.get(project, ()))

    def project_of(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._namespace_project.get(namespace)

    # ------------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------------

    def observe_binding(self, binding: RoleTemplateBinding) -> None:
        if binding.kind != PROJECT_ROLE_TEMPLATE_BINDING:
            return
        key = (binding.namespace, binding.name)
        if not binding.project_name:
            self.forget_binding(*key)
            return

        with self._lock:
            previous = self._binding_project.get(key)
            if previous == binding.project_name:
                return
            if previous is not None:
                self._discard(self._bindings, previous, key)
            self._binding_project[key] = binding.project_name
            self._bindings[binding.project_name].add(key)
            indexed_bindings.set(len(self._binding_project))

    def forget_binding(self, namespace: Optional[str], name: str) -> None:
        key = (namespace, name)
        with self._lock:
            project = self._binding_project.pop(key, None)
            if project is not None:
                self._discard(self._bindings, project, key)
            indexed_bindings.set(len(self._binding_project))

    def bindings_for_project(self, project: str) -> List[BindingKey]:
        with self._lock:
            return sorted(
                self._bindings.get(project, ()), key=lambda key: (key[0] or "", key[1])
            )

    # ------------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------------

    def prime(self, store) -> None:
        """Populate from a full listing; used once at startup."""
        for body in store.list(NAMESPACE):
            self.observe_namespace(body)
        for body in store.list(PROJECT_ROLE_TEMPLATE_BINDING):
            self.observe_binding(
                RoleTemplateBinding.from_dict(PROJECT_ROLE_TEMPLATE_BINDING, body)
            )
        logger.info(f"Project index primed: {self.stats()}")

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "namespaces": len(self._namespace_project),
                "bindings": len(self._binding_project),
                "projects": len(set(self._namespace_project.values())),
            }

    @staticmethod
    def _discard(mapping: Dict[str, set], project: str, member) -> None:
        members = mapping.get(project)
        if members is None:
            return
        members.discard(member)
        if not members:
            del mapping[project]
