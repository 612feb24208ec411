from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import semver
import yaml

from admission.admissionkit.handlers import Request
from admission.core import keys
from admission.core.context import RequestContext
from admission.core.models import App
from admission.core.patch import PatchOperation, patch_add
from admission.errors import AdmissionError, ErrorKind, is_kind
from admission.providers.k8s_provider import KIND_CONFIG_MAP, KIND_RELEASE, ObjectStore

logger = logging.getLogger(__name__)

CLUSTER_CATALOGS = ("cluster", "cluster-test")

# Last chart version of each cluster app that still pins its own version. Newer
# (and unversioned) apps take the version from the cluster's Release CR.
LAST_SELF_VERSIONED: Dict[str, semver.Version] = {
    "cluster-aws": semver.Version.parse("0.76.1"),
}


class ClusterAppVersionMutator:
    """Sets `.spec.version` of cluster apps from the Release their cluster is pinned to."""

    name = "cluster-app-version"

    def __init__(self, *, store: ObjectStore) -> None:
        if store is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "ClusterAppVersionMutator.store must not be empty")
        self._store = store

    def mutate(self, req: Request) -> List[PatchOperation]:
        app = req.app
        if app.spec.catalog not in CLUSTER_CATALOGS:
            return []

        last = LAST_SELF_VERSIONED.get(keys.app_name(app))
        if last is None:
            return []

        if app.spec.version:
            try:
                current = semver.Version.parse(app.spec.version.lstrip("v"))
            except ValueError:
                req.log.debug("keeping unparsable version '%s'", app.spec.version)
                return []
            if not current > last:
                return []

        release_name = self.release_name(app, req.ctx)
        version = self.component_version(release_name, keys.app_name(app), req.ctx)

        req.log.info("setting version %s from Release '%s'", version, release_name)
        return [patch_add("/spec/version", version)]

    def release_name(self, app: App, ctx: RequestContext) -> str:
        """Release CR name (`v<version>`) from `global.release.version` in the user values."""
        name = keys.user_config_map_name(app)
        if not name:
            raise AdmissionError(
                ErrorKind.CLUSTER_APP,
                f"Cluster App '{keys.object_ref(app)}' does not have the user config",
            )
        namespace = keys.user_config_map_namespace(app) or app.namespace

        try:
            cm = self._store.get(KIND_CONFIG_MAP, namespace, name, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.CANCELLED):
                raise
            raise AdmissionError(ErrorKind.CLUSTER_APP, f"error getting user config '{namespace}/{name}'") from e

        raw = ((cm.get("data") or {}).get("values")) or ""
        try:
            values = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise AdmissionError(ErrorKind.CLUSTER_APP, f"error parsing user config '{namespace}/{name}'") from e

        version = _lookup(values, "global", "release", "version")
        if not version:
            raise AdmissionError(
                ErrorKind.CLUSTER_APP,
                f"user config '{namespace}/{name}' does not set global.release.version",
            )
        version = str(version)
        return version if version.startswith("v") else f"v{version}"

    def component_version(self, release_name: str, component: str, ctx: RequestContext) -> str:
        try:
            release = self._store.get(KIND_RELEASE, "", release_name, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.CANCELLED):
                raise
            raise AdmissionError(ErrorKind.CLUSTER_APP, f"error getting Release '{release_name}'") from e

        for c in (release.get("spec") or {}).get("components") or []:
            if c.get("name") == component and c.get("version"):
                return str(c["version"])
        raise AdmissionError(
            ErrorKind.CLUSTER_APP,
            f"Release '{release_name}' does not have the '{component}' component",
        )


def _lookup(values: Any, *path: str) -> Optional[Any]:
    cur = values
    for p in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(p)
    return cur
