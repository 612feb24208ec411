"""Defaulting of App CR fields (labels, cluster values ConfigMap, kubeconfig Secret)."""

from __future__ import annotations

import logging
from typing import List

import semver

from admission.admissionkit.handlers import Request
from admission.app.validator import MIN_APP_OPERATOR_MAJOR
from admission.core import keys
from admission.core.context import RequestContext
from admission.core.models import App
from admission.core.patch import PatchOperation, escape_path_segment, patch_add
from admission.errors import AdmissionError, ErrorKind, is_kind
from admission.providers.k8s_provider import KIND_APP, KIND_CONFIG_MAP, KIND_SECRET, ObjectStore

logger = logging.getLogger(__name__)

CHART_OPERATOR_APP = "chart-operator"


class DefaultsMutator:
    name = "app-defaults"

    def __init__(self, *, store: ObjectStore) -> None:
        if store is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "DefaultsMutator.store must not be empty")
        self._store = store

    def mutate(self, req: Request) -> List[PatchOperation]:
        app = req.app

        version = self.app_operator_version(app, req.ctx)
        if not version:
            req.log.debug("no app-operator version found, skipping defaulting")
            return []
        if version == keys.UNIQUE_APP_OPERATOR_VERSION:
            return []

        try:
            parsed = semver.Version.parse(version.lstrip("v"), optional_minor_and_patch=True)
        except ValueError:
            req.log.info("skipping defaulting: invalid app-operator version '%s'", version)
            return []
        if parsed.major < MIN_APP_OPERATOR_MAJOR:
            return []

        patch: List[PatchOperation] = []
        patch.extend(self.default_labels(app, version))
        patch.extend(self.default_config(app, req.ctx))
        patch.extend(self.default_kube_config(app, req.ctx))
        return patch

    def app_operator_version(self, app: App, ctx: RequestContext) -> str:
        """Version label of the app, or of the chart-operator app sharing its namespace."""
        version = keys.version_label(app)
        if version:
            return version

        try:
            chart_operator = self._store.get(KIND_APP, app.namespace, CHART_OPERATOR_APP, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.NOT_FOUND):
                return ""
            raise
        labels = (chart_operator.get("metadata") or {}).get("labels") or {}
        return labels.get(keys.LABEL_APP_OPERATOR_VERSION, "")

    def default_labels(self, app: App, version: str) -> List[PatchOperation]:
        wanted = {}
        if keys.LABEL_APP not in app.labels and keys.LABEL_APP_KUBERNETES_NAME not in app.labels:
            wanted[keys.LABEL_APP_KUBERNETES_NAME] = app.spec.name
        if keys.LABEL_APP_OPERATOR_VERSION not in app.labels:
            wanted[keys.LABEL_APP_OPERATOR_VERSION] = version
        if not wanted:
            return []

        patch: List[PatchOperation] = []
        if not app.labels:
            patch.append(patch_add("/metadata/labels", {}))
        for k, v in wanted.items():
            patch.append(patch_add(f"/metadata/labels/{escape_path_segment(k)}", v))
        return patch

    def default_config(self, app: App, ctx: RequestContext) -> List[PatchOperation]:
        if keys.app_config_map_name(app) or keys.app_config_map_namespace(app):
            return []

        name = keys.cluster_config_map_name(app)
        if not self._exists(KIND_CONFIG_MAP, app.namespace, name, ctx):
            return []

        patch: List[PatchOperation] = []
        if "config" not in app.spec.model_fields_set:
            patch.append(patch_add("/spec/config", {}))
        patch.append(patch_add("/spec/config/configMap", {"namespace": app.namespace, "name": name}))
        return patch

    def default_kube_config(self, app: App, ctx: RequestContext) -> List[PatchOperation]:
        if keys.in_cluster(app):
            return []
        if keys.kube_config_secret_name(app) or keys.kube_config_secret_namespace(app):
            return []

        name = keys.cluster_kube_config_secret_name(app)
        if not self._exists(KIND_SECRET, app.namespace, name, ctx):
            return []

        patch: List[PatchOperation] = []
        if "kube_config" not in app.spec.model_fields_set:
            patch.append(patch_add("/spec/kubeConfig", {}))
        if not keys.kube_config_context_name(app):
            patch.append(patch_add("/spec/kubeConfig/context", {"name": app.namespace}))
        patch.append(patch_add("/spec/kubeConfig/secret", {"namespace": app.namespace, "name": name}))
        return patch

    def _exists(self, kind: str, namespace: str, name: str, ctx: RequestContext) -> bool:
        try:
            self._store.get(kind, namespace, name, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.NOT_FOUND):
                return False
            raise
        return True
