"""
Authorization grant controller
Materializes role templates and bindings into native RBAC and PSP objects
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import kopf

from grantsync.core.config import get_settings
from grantsync.core.logging import get_logger, setup_logging
from grantsync.exceptions import (
    ConfigurationError,
    ConflictError,
    CycleError,
    NotFoundError,
)
from grantsync.metrics import reconcile_errors
from grantsync.models.kinds import (
    API_GROUP,
    CLUSTER_ROLE_TEMPLATE_BINDING,
    NAMESPACE,
    POD_SECURITY_POLICY_TEMPLATE,
    PROJECT_ROLE_TEMPLATE_BINDING,
    ROLE_TEMPLATE,
    ResourceKind,
)
from grantsync.repositories.index import ProjectIndex
from grantsync.repositories.kubernetes import create_kubernetes_store
from grantsync.repositories.store import ObjectStore
from grantsync.services.bindings import BindingReconciler
from grantsync.services.namespaces import NamespaceMembershipWatcher
from grantsync.services.psp import PodSecurityPolicyPropagator
from grantsync.services.templates import RoleTemplateHandler

logger = get_logger("grantsync.controller")

# ============================================================================
# COMPONENTS
# ============================================================================


@dataclass
class Components:
    """Everything the handlers need, built once at startup."""

    store: ObjectStore
    index: ProjectIndex
    bindings: BindingReconciler
    namespaces: NamespaceMembershipWatcher
    templates: RoleTemplateHandler
    psps: PodSecurityPolicyPropagator


def build_components(store: ObjectStore) -> Components:
    index = ProjectIndex()
    bindings = BindingReconciler(store, index)
    return Components(
        store=store,
        index=index,
        bindings=bindings,
        namespaces=NamespaceMembershipWatcher(store, index, bindings),
        templates=RoleTemplateHandler(store, bindings),
        psps=bindings.psps,
    )


# ============================================================================
# ERROR TRANSLATION
# ============================================================================


def dispatch(action: Callable[..., Any], *args) -> Any:
    """Run a reconciliation and translate failures for the operator runtime.

    Cycles are permanent until the templates change; missing objects and
    version conflicts are retried after a delay; anything else falls back to
    kopf's own backoff.
    """
    try:
        return action(*args)
    except CycleError as e:
        reconcile_errors.labels(error_type="cycle").inc()
        logger.error(f"Role template graph is cyclic: {e}")
        raise kopf.PermanentError(str(e)) from e
    except ConfigurationError as e:
        reconcile_errors.labels(error_type="configuration").inc()
        logger.warning(f"{e}. Skipping.")
        return None
    except (NotFoundError, ConflictError) as e:
        reconcile_errors.labels(error_type=type(e).__name__).inc()
        raise kopf.TemporaryError(str(e), delay=get_settings().retry_delay) from e
    except Exception as e:
        reconcile_errors.labels(error_type="unexpected").inc()
        logger.error(f"Unexpected error during reconciliation: {e}", exc_info=True)
        raise


def _current(store: ObjectStore, kind: ResourceKind, name: str, namespace: Optional[str]):
    # handlers act on the latest stored copy, not the event snapshot
    return store.get_or_none(kind, name, namespace)


# ============================================================================
# KOPF HANDLERS
# ============================================================================


def register(registry: kopf.OperatorRegistry, components: Components) -> None:
    """Register every handler against ``registry``."""
    config = get_settings()
    store = components.store

    prtb = PROJECT_ROLE_TEMPLATE_BINDING
    crtb = CLUSTER_ROLE_TEMPLATE_BINDING
    rt = ROLE_TEMPLATE
    pspt = POD_SECURITY_POLICY_TEMPLATE
    ns = NAMESPACE

    @kopf.on.resume(prtb.group, prtb.version, prtb.plural, registry=registry)
    @kopf.on.create(prtb.group, prtb.version, prtb.plural, registry=registry)
    @kopf.on.update(prtb.group, prtb.version, prtb.plural, registry=registry)
    @kopf.on.delete(prtb.group, prtb.version, prtb.plural, registry=registry)
    @kopf.timer(prtb.group, prtb.version, prtb.plural, interval=config.resync_interval, registry=registry)
    def project_binding_changed(name: str, namespace: str, **_):
        """Handle ProjectRoleTemplateBinding changes and periodic resync"""
        dispatch(components.bindings.sync, prtb, _current(store, prtb, name, namespace))

    @kopf.on.resume(crtb.group, crtb.version, crtb.plural, registry=registry)
    @kopf.on.create(crtb.group, crtb.version, crtb.plural, registry=registry)
    @kopf.on.update(crtb.group, crtb.version, crtb.plural, registry=registry)
    @kopf.on.delete(crtb.group, crtb.version, crtb.plural, registry=registry)
    @kopf.timer(crtb.group, crtb.version, crtb.plural, interval=config.resync_interval, registry=registry)
    def cluster_binding_changed(name: str, namespace: str, **_):
        """Handle ClusterRoleTemplateBinding changes and periodic resync"""
        dispatch(components.bindings.sync, crtb, _current(store, crtb, name, namespace))

    @kopf.on.resume(rt.group, rt.version, rt.plural, registry=registry)
    @kopf.on.create(rt.group, rt.version, rt.plural, registry=registry)
    @kopf.on.update(rt.group, rt.version, rt.plural, registry=registry)
    @kopf.on.delete(rt.group, rt.version, rt.plural, registry=registry)
    def role_template_changed(name: str, **_):
        """Handle RoleTemplate changes"""
        dispatch(components.templates.sync, name, _current(store, rt, name, None))

    @kopf.on.resume(pspt.group, pspt.version, pspt.plural, registry=registry)
    @kopf.on.create(pspt.group, pspt.version, pspt.plural, registry=registry)
    @kopf.on.update(pspt.group, pspt.version, pspt.plural, registry=registry)
    def psp_template_changed(name: str, **_):
        """Handle PodSecurityPolicyTemplate changes"""
        dispatch(components.psps.refresh_from_template, name, _current(store, pspt, name, None))

    @kopf.on.resume(ns.group, ns.version, ns.plural, registry=registry)
    @kopf.on.create(ns.group, ns.version, ns.plural, registry=registry)
    @kopf.on.update(ns.group, ns.version, ns.plural, registry=registry)
    def namespace_changed(name: str, **_):
        """Handle namespace creation and label changes"""
        dispatch(components.namespaces.sync, name, _current(store, ns, name, None))

    @kopf.on.event(ns.group, ns.version, ns.plural, registry=registry)
    def namespace_event(event: Dict[str, Any], name: str, **_):
        """Drop deleted namespaces from the project index"""
        if event.get("type") == "DELETED":
            components.index.forget_namespace(name)

    @kopf.on.startup(registry=registry)
    def configure(settings: kopf.OperatorSettings, **_):
        """Configure kopf settings"""
        settings.batching.worker_limit = config.worker_limit
        settings.posting.enabled = False
        settings.watching.server_timeout = 300
        settings.watching.client_timeout = 310
        settings.watching.connect_timeout = 10
        settings.persistence.finalizer = f"{API_GROUP}/kopf-finalizer"
        settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
            prefix=API_GROUP
        )
        settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
            prefix=API_GROUP
        )
        settings.execution.max_workers = config.max_workers
        settings.batching.idle_timeout = 1.0
        settings.batching.batch_window = 0.5

        logger.info("Kopf configured with API server protection settings")

    @kopf.on.startup(registry=registry)
    def prime_index(**_):
        """Populate the project index before the first notifications arrive"""
        components.index.prime(store)
        logger.info("Grant controller ready")

    @kopf.on.probe(id="index", registry=registry)
    def index_probe(**_):
        """Project index sizes"""
        return components.index.stats()


# ============================================================================
# MAIN
# ============================================================================


def main() -> None:
    setup_logging()
    config = get_settings()

    components = build_components(create_kubernetes_store())
    registry = kopf.OperatorRegistry()
    register(registry, components)

    kopf.run(
        registry=registry,
        clusterwide=True,
        liveness_endpoint=config.liveness_endpoint,
    )


if __name__ == "__main__":
    main()
