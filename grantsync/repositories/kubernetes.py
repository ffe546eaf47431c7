"""Object store backed by the Kubernetes API through the dynamic client."""

import json
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError

from grantsync.core.logging import get_logger
from grantsync.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from grantsync.models.kinds import ResourceKind
from grantsync.models.resources import metadata
from grantsync.repositories.store import ObjectStore, format_selector

logger = get_logger(__name__)


class KubernetesObjectStore(ObjectStore):
    """ObjectStore over a DynamicClient.

    ``update`` maps to a replace, so the body's resourceVersion is enforced by
    the API server. 404 and 409 responses are translated into the store's
    error types; everything else propagates unchanged.
    """

    def __init__(self, dynamic_client: DynamicClient):
        self.client = dynamic_client
        self._apis: Dict[ResourceKind, Any] = {}

    def _api(self, kind: ResourceKind):
        api = self._apis.get(kind)
        if api is None:
            api = self.client.resources.get(api_version=kind.api_version, kind=kind.kind)
            self._apis[kind] = api
        return api

    def get(self, kind, name, namespace=None):
        try:
            return self._api(kind).get(name=name, namespace=_ns(kind, namespace)).to_dict()
        except DynamicApiError as e:
            raise _translate(e, kind, name, namespace)

    def list(self, kind, namespace=None, labels=None):
        kwargs = {}
        if labels:
            kwargs["label_selector"] = format_selector(labels)
        try:
            result = self._api(kind).get(namespace=_ns(kind, namespace), **kwargs)
        except DynamicApiError as e:
            raise _translate(e, kind, "", namespace)
        return result.to_dict().get("items") or []

    def create(self, kind, body):
        meta = metadata(body)
        try:
            return self._api(kind).create(
                body=body, namespace=_ns(kind, meta.get("namespace"))
            ).to_dict()
        except DynamicApiError as e:
            raise _translate(e, kind, meta.get("name", ""), meta.get("namespace"))

    def update(self, kind, body):
        meta = metadata(body)
        try:
            return self._api(kind).replace(
                body=body, namespace=_ns(kind, meta.get("namespace"))
            ).to_dict()
        except DynamicApiError as e:
            raise _translate(e, kind, meta.get("name", ""), meta.get("namespace"))

    def delete(self, kind, name, namespace=None):
        try:
            self._api(kind).delete(name=name, namespace=_ns(kind, namespace))
        except DynamicApiError as e:
            raise _translate(e, kind, name, namespace)


def _ns(kind: ResourceKind, namespace: Optional[str]) -> Optional[str]:
    return namespace if kind.namespaced else None


def _reason(e: DynamicApiError) -> str:
    try:
        return json.loads(e.body or "{}").get("reason", "")
    except (TypeError, ValueError):
        return ""


def _translate(e: DynamicApiError, kind: ResourceKind, name: str, namespace: Optional[str]):
    if e.status == 404:
        return NotFoundError(kind.kind, name, namespace)
    if e.status == 409:
        if _reason(e) == "AlreadyExists":
            return AlreadyExistsError(kind.kind, name, namespace)
        return ConflictError(kind.kind, name, namespace)
    return e


def create_kubernetes_store() -> KubernetesObjectStore:
    """Load in-cluster or local kube config and build a store."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")

    return KubernetesObjectStore(DynamicClient(client.ApiClient()))
