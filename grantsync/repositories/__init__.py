"""Repositories package for object store access."""

from .index import ProjectIndex
from .kubernetes import KubernetesObjectStore, create_kubernetes_store
from .memory import InMemoryObjectStore
from .store import ObjectStore

__all__ = [
    "ObjectStore",
    "InMemoryObjectStore",
    "KubernetesObjectStore",
    "create_kubernetes_store",
    "ProjectIndex",
]
