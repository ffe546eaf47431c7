"""In-process object store with API-server-like semantics."""

import copy
import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from grantsync.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from grantsync.models.kinds import ResourceKind
from grantsync.models.resources import metadata
from grantsync.repositories.store import ObjectStore, matches_labels

Key = Tuple[Optional[str], str]


class InMemoryObjectStore(ObjectStore):
    """Object store kept in a dictionary.

    Mirrors the API server behaviour the reconcilers depend on: resource
    versions bumped on every write, stale updates rejected, and deletion of
    an object carrying finalizers deferred until the last finalizer is
    removed. Every write is recorded in ``writes`` as ``(verb, kind, key)``.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._objects: Dict[ResourceKind, Dict[Key, Dict[str, Any]]] = {}
        self._versions = itertools.count(1)
        self.writes: List[Tuple[str, str, str]] = []

    def _bucket(self, kind: ResourceKind) -> Dict[Key, Dict[str, Any]]:
        return self._objects.setdefault(kind, {})

    def _key(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> Key:
        return (namespace if kind.namespaced else None, name)

    def _record(self, verb: str, kind: ResourceKind, key: Key) -> None:
        namespace, name = key
        self.writes.append((verb, kind.kind, f"{namespace}/{name}" if namespace else name))

    def _stamp(self, body: Dict[str, Any]) -> None:
        body["metadata"]["resourceVersion"] = str(next(self._versions))

    def get(self, kind, name, namespace=None):
        with self._lock:
            obj = self._bucket(kind).get(self._key(kind, name, namespace))
            if obj is None:
                raise NotFoundError(kind.kind, name, namespace)
            return copy.deepcopy(obj)

    def list(self, kind, namespace=None, labels=None):
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (ns, _), obj in sorted(
                    self._bucket(kind).items(), key=lambda item: (item[0][0] or "", item[0][1])
                )
                if (namespace is None or ns == namespace) and matches_labels(obj, labels)
            ]

    def create(self, kind, body):
        with self._lock:
            body = copy.deepcopy(body)
            meta = body.setdefault("metadata", {})
            key = self._key(kind, meta["name"], meta.get("namespace"))
            if not kind.namespaced:
                meta.pop("namespace", None)
            if key in self._bucket(kind):
                raise AlreadyExistsError(kind.kind, key[1], key[0])

            body.setdefault("apiVersion", kind.api_version)
            body.setdefault("kind", kind.kind)
            meta.setdefault("uid", str(uuid.uuid4()))
            meta.setdefault("creationTimestamp", _now())
            self._stamp(body)

            self._bucket(kind)[key] = body
            self._record("create", kind, key)
            return copy.deepcopy(body)

    def update(self, kind, body):
        with self._lock:
            body = copy.deepcopy(body)
            meta = metadata(body)
            key = self._key(kind, meta["name"], meta.get("namespace"))
            stored = self._bucket(kind).get(key)
            if stored is None:
                raise NotFoundError(kind.kind, key[1], key[0])

            expected = meta.get("resourceVersion")
            if expected and expected != stored["metadata"]["resourceVersion"]:
                raise ConflictError(kind.kind, key[1], key[0])

            # Server-owned fields survive a replace
            for field in ("uid", "creationTimestamp", "deletionTimestamp"):
                if field in stored["metadata"]:
                    meta[field] = stored["metadata"][field]
                else:
                    meta.pop(field, None)
            self._stamp(body)
            self._record("update", kind, key)

            if meta.get("deletionTimestamp") and not meta.get("finalizers"):
                del self._bucket(kind)[key]
                return copy.deepcopy(body)

            self._bucket(kind)[key] = body
            return copy.deepcopy(body)

    def delete(self, kind, name, namespace=None):
        with self._lock:
            key = self._key(kind, name, namespace)
            stored = self._bucket(kind).get(key)
            if stored is None:
                raise NotFoundError(kind.kind, name, namespace)

            self._record("delete", kind, key)
            if stored["metadata"].get("finalizers"):
                if not stored["metadata"].get("deletionTimestamp"):
                    stored["metadata"]["deletionTimestamp"] = _now()
                    self._stamp(stored)
                return
            del self._bucket(kind)[key]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
