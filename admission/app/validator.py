from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import semver

from admission.admissionkit.handlers import Rejection, Request, rejectf
from admission.authz.inspector import Inspector
from admission.core import keys
from admission.core.context import RequestContext
from admission.core.models import OPERATION_UPDATE, App
from admission.errors import AdmissionError, ErrorKind, is_kind
from admission.providers.k8s_provider import KIND_APP, KIND_CATALOG, KIND_CONFIG_MAP, KIND_SECRET, ObjectStore

logger = logging.getLogger(__name__)

MIN_APP_OPERATOR_MAJOR = 3


class SecurityValidator:
    """Denies apps the security policy does not allow."""

    name = "security"

    def __init__(self, *, inspector: Inspector) -> None:
        if inspector is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "SecurityValidator.inspector must not be empty")
        self._inspector = inspector

    def validate(self, req: Request) -> Optional[Rejection]:
        req.log.debug("inspecting app for user '%s' (groups=%s)", req.user_info.username, req.user_info.groups)
        decision = self._inspector.inspect(req.user_info, req.app)
        if decision.allowed:
            return None
        return rejectf(decision.reason)


def is_handled_by_app_operator(app: App) -> bool:
    """
    Whether app-operator >= 3 (or the unique instance) reconciles this app.

    Apps in org namespaces that are not in-cluster are always reconciled by the
    unique app-operator, whatever their version label says.
    """
    if keys.is_in_org_namespace(app) and not keys.in_cluster(app):
        return True

    label = keys.version_label(app)
    if label == keys.UNIQUE_APP_OPERATOR_VERSION:
        return True
    try:
        version = semver.Version.parse(label.lstrip("v"), optional_minor_and_patch=True)
    except (TypeError, ValueError):
        return False
    return version.major >= MIN_APP_OPERATOR_MAJOR


class AppValidator:
    """Checks that an App CR is well formed and that what it points at exists."""

    name = "app"

    def __init__(self, *, store: ObjectStore) -> None:
        if store is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "AppValidator.store must not be empty")
        self._store = store

    def validate(self, req: Request) -> Optional[Rejection]:
        app = req.app
        if not is_handled_by_app_operator(app):
            req.log.debug("skipping validation of app with version label '%s'", keys.version_label(app))
            return None

        if req.operation == OPERATION_UPDATE and req.old_app is not None:
            old_ns, new_ns = req.old_app.spec.namespace, app.spec.namespace
            if old_ns and old_ns != new_ns:
                return rejectf(
                    "validation error: target namespace for app '%s' cannot be changed from '%s' to '%s'",
                    app.name,
                    old_ns,
                    new_ns,
                )

        rejection = self._validate_catalog(app, req.ctx)
        if rejection is not None:
            return rejection

        # Apps managed by another controller may be created before their configuration.
        if keys.LABEL_MANAGED_BY in app.labels:
            return None

        for kind, namespace, name in config_references(app):
            if not self._exists(kind, namespace, name, req.ctx):
                return rejectf("validation error: %s '%s/%s' not found", kind.lower(), namespace, name)

        return None

    def _validate_catalog(self, app: App, ctx: RequestContext) -> Optional[Rejection]:
        catalog = keys.catalog_name(app)
        if not catalog:
            return rejectf("validation error: catalog not specified for app '%s'", app.name)

        catalogs = self._store.list(KIND_CATALOG, ctx, field_selector=f"metadata.name={catalog}")
        if not any(((c.get("metadata") or {}).get("name") or "") == catalog for c in catalogs):
            return rejectf("validation error: catalog '%s' not found", catalog)
        return None

    def _exists(self, kind: str, namespace: str, name: str, ctx: RequestContext) -> bool:
        try:
            self._store.get(kind, namespace, name, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.NOT_FOUND):
                return False
            raise
        return True


def config_references(app: App) -> List[Tuple[str, str, str]]:
    """
    ConfigMaps and Secrets the app needs to exist before it can be installed.

    The app ConfigMap is left out: it is generated by cluster-operator and may
    legitimately show up after the App CR.
    """
    refs = [
        (KIND_SECRET, keys.app_secret_namespace(app), keys.app_secret_name(app)),
        (KIND_CONFIG_MAP, keys.user_config_map_namespace(app), keys.user_config_map_name(app)),
        (KIND_SECRET, keys.user_secret_namespace(app), keys.user_secret_name(app)),
    ]
    return [(kind, ns or app.namespace, name) for kind, ns, name in refs if name]


class InClusterAppValidator:
    name = "in-cluster-app"

    def __init__(self, *, store: ObjectStore) -> None:
        if store is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "InClusterAppValidator.store must not be empty")
        self._store = store

    def validate(self, req: Request) -> Optional[Rejection]:
        app = req.app
        if not keys.in_cluster(app) or not app.name:
            return None

        apps = self._store.list(KIND_APP, req.ctx, field_selector=f"metadata.name={app.name}")
        for other in apps:
            meta = other.get("metadata") or {}
            if meta.get("name") != app.name or meta.get("namespace") == app.namespace:
                continue
            spec = other.get("spec") or {}
            if (spec.get("kubeConfig") or {}).get("inCluster"):
                return rejectf(
                    "validation error: in-cluster app '%s' already exists in '%s' namespace",
                    app.name,
                    meta.get("namespace") or "",
                )
        return None
