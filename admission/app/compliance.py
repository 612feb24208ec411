"""
Pod Security Standards compliance mutation for App CRs.

Workload cluster apps deployed to clusters at or above the cutoff release no longer
get PodSecurityPolicies, so they must be told to enforce PSS instead. This is done by
appending a baseline extra config (a ConfigMap owned by this controller) to
`.spec.extraConfigs` with the highest priority.

Per decision:

    NotApplicable            provider not covered, app not tied to a cluster, or a
                             management cluster bundle app
    AlreadyPatched           baseline extra config already set (ensure ConfigMap only)
    NeedsVersionLookup       CAPI cluster record not there yet; a later update of the
                             app re-triggers the decision
    BelowCutoff              release < cutoff, or CAPI cluster without the psp label
    AtOrAboveCutoff          gate passed under dry-run: nothing written, no patch
    PatchRequired            ensure ConfigMap + append extra config

Two profiles exist. `pss` gates vintage providers on the release version only. The
`psp-removal` profile also covers CAPI providers (gated on the Cluster's
`policy.giantswarm.io/psp-status` label), stamps that label on patched apps, skips
bundle apps and supports per-app artifacts loaded from a YAML file.

Cluster and release data is re-read on every call. Any store or version parsing
failure is fatal for the request; nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import semver
import yaml
from pydantic import ValidationError

from admission.admissionkit.handlers import Request
from admission.config import COMPLIANCE_VARIANT_PSP_REMOVAL, COMPLIANCE_VARIANT_PSS, ControllerConfig
from admission.core import keys
from admission.core.context import RequestContext
from admission.core.models import App, ExtraConfig, K8sModel
from admission.core.patch import PatchOperation, escape_path_segment, patch_add
from admission.errors import AdmissionError, ErrorKind, is_kind
from admission.providers.k8s_provider import KIND_CLUSTER, KIND_CONFIG_MAP, ObjectStore

logger = logging.getLogger(__name__)

TOP_PRIORITY = 150
EXTRA_CONFIGS_PATH = "/spec/extraConfigs"
MAX_ARTIFACT_NAME_LENGTH = 60

# Set by pss-operator on CAPI clusters that no longer run PSPs.
PSP_STATUS_LABEL = "policy.giantswarm.io/psp-status"
PSP_STATUS_DISABLED = "disabled"

# (artifact name, cutoff version) per variant
VARIANT_DEFAULTS: Dict[str, Tuple[str, str]] = {
    COMPLIANCE_VARIANT_PSS: ("pss-compliance-patch", "v19.2.0"),
    COMPLIANCE_VARIANT_PSP_REMOVAL: ("psp-removal-patch", "v19.3.0"),
}


class ComplianceState(str, Enum):
    NOT_APPLICABLE = "NotApplicable"
    NEEDS_VERSION_LOOKUP = "NeedsVersionLookup"
    BELOW_CUTOFF = "BelowCutoff"
    AT_OR_ABOVE_CUTOFF = "AtOrAboveCutoff"
    ALREADY_PATCHED = "AlreadyPatched"
    PATCH_REQUIRED = "PatchRequired"


class ConfigPatch(K8sModel):
    """Per-app artifact: own ConfigMap (name suffix) and values."""

    app_name: str
    config_map_suffix: str = ""
    values: str = ""


def load_config_patches(path: str) -> Tuple[ConfigPatch, ...]:
    """
    Read per-app artifacts from a YAML list, e.g.:

        - appName: kyverno
          configMapSuffix: kyv
          values: |
            kyverno:
              podSecurityStandard: restricted
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
    except (OSError, yaml.YAMLError) as e:
        raise AdmissionError(ErrorKind.INVALID_CONFIG, f"unable to read config patches from '{path}'") from e

    if not isinstance(raw, list):
        raise AdmissionError(ErrorKind.INVALID_CONFIG, f"config patches in '{path}' must be a list")
    try:
        return tuple(ConfigPatch.model_validate(item) for item in raw)
    except ValidationError as e:
        raise AdmissionError(ErrorKind.INVALID_CONFIG, f"invalid config patch in '{path}'") from e


@dataclass(frozen=True)
class BaselineProfile:
    artifact_name: str
    artifact_content: str
    cutoff_version: semver.Version
    vintage_providers: FrozenSet[str]
    capi_providers: FrozenSet[str] = frozenset()
    # Cluster label CAPI clusters are gated on; also set on every patched app.
    status_label: str = ""
    status_label_value: str = PSP_STATUS_DISABLED
    reject_unknown_providers: bool = False
    skip_bundle_apps: bool = False
    # pss: the baseline must be the last extra config. psp-removal: anywhere.
    match_any_position: bool = False
    config_patches: Tuple[ConfigPatch, ...] = ()
    priority: int = TOP_PRIORITY

    @classmethod
    def from_controller_config(cls, cfg: ControllerConfig) -> "BaselineProfile":
        variant = (cfg.compliance_variant or COMPLIANCE_VARIANT_PSS).lower()
        if variant not in VARIANT_DEFAULTS:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, f"unknown compliance variant {variant!r}")
        default_name, default_cutoff = VARIANT_DEFAULTS[variant]

        raw_cutoff = cfg.cutoff_version or default_cutoff
        try:
            cutoff = parse_version(raw_cutoff)
        except ValueError as e:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, f"invalid cutoff version {raw_cutoff!r}") from e

        profile = cls(
            artifact_name=cfg.baseline_artifact_name or default_name,
            artifact_content=cfg.baseline_artifact_content,
            cutoff_version=cutoff,
            vintage_providers=frozenset(p.lower() for p in cfg.vintage_providers),
        )
        if variant == COMPLIANCE_VARIANT_PSS:
            return profile

        return replace(
            profile,
            capi_providers=frozenset(p.lower() for p in cfg.capi_providers),
            status_label=PSP_STATUS_LABEL,
            reject_unknown_providers=True,
            skip_bundle_apps=True,
            match_any_position=True,
            config_patches=load_config_patches(cfg.config_patches_file) if cfg.config_patches_file else (),
        )


@dataclass(frozen=True)
class ComplianceResult:
    state: ComplianceState
    patch: List[PatchOperation] = field(default_factory=list)


@dataclass(frozen=True)
class Artifact:
    name: str
    content: str


def parse_version(raw: str) -> semver.Version:
    """Parse a release version; a leading `v` and a missing minor/patch are accepted."""
    s = (raw or "").strip()
    if s[:1] in ("v", "V"):
        s = s[1:]
    return semver.Version.parse(s, optional_minor_and_patch=True)


class ComplianceMutator:
    name = "pss-compliance"

    def __init__(self, *, store: ObjectStore, provider: str, profile: BaselineProfile) -> None:
        if store is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "ComplianceMutator.store must not be empty")
        self._store = store
        self._provider = (provider or "").lower()
        self._profile = profile

    def mutate(self, req: Request) -> List[PatchOperation]:
        return self.evaluate(req).patch

    def evaluate(self, req: Request) -> ComplianceResult:
        app = req.app
        log = req.log
        profile = self._profile

        vintage = self._provider in profile.vintage_providers
        capi = self._provider in profile.capi_providers
        if not vintage and not capi:
            if profile.reject_unknown_providers:
                raise AdmissionError(ErrorKind.COMPLIANCE, f"unsupported provider '{self._provider}'")
            log.debug("provider '%s' is not subject to the compliance baseline", self._provider)
            return ComplianceResult(ComplianceState.NOT_APPLICABLE)

        cluster_id = keys.cluster_label(app)
        if not cluster_id:
            # Not a workload cluster app.
            log.debug("app does not belong to any workload cluster")
            return ComplianceResult(ComplianceState.NOT_APPLICABLE)

        if profile.skip_bundle_apps and keys.is_management_cluster_bundle(app):
            log.debug("app is a management cluster bundle")
            return ComplianceResult(ComplianceState.NOT_APPLICABLE)

        artifact = self.artifact_for(app)
        extra_config = self.baseline_extra_config(app, artifact.name)

        existing = keys.extra_configs(app)
        if self.is_patched(existing, extra_config):
            if req.dry_run:
                return ComplianceResult(ComplianceState.ALREADY_PATCHED)
            self.ensure_artifact(app.namespace, artifact, req.ctx)
            log.debug("baseline extra config already set")
            return ComplianceResult(ComplianceState.ALREADY_PATCHED, self.status_label_patch(app))

        if vintage:
            release_version = self.resolve_release_version(cluster_id, req.ctx)
            if release_version < profile.cutoff_version:
                log.debug(
                    "cluster '%s' release %s is below cutoff %s",
                    cluster_id,
                    release_version,
                    profile.cutoff_version,
                )
                return ComplianceResult(ComplianceState.BELOW_CUTOFF)
        else:
            cluster = self.find_cluster(cluster_id, req.ctx, required=False)
            if cluster is None:
                # CAPI creates the Cluster after its apps; pss-operator touches them again later.
                log.debug("Cluster '%s' does not exist yet", cluster_id)
                return ComplianceResult(ComplianceState.NEEDS_VERSION_LOOKUP)
            if not self.status_label_disabled(cluster, cluster_id):
                log.debug("Cluster '%s' still runs PSPs", cluster_id)
                return ComplianceResult(ComplianceState.BELOW_CUTOFF)

        if req.dry_run:
            log.debug("dry-run: skipping baseline ConfigMap and patch")
            return ComplianceResult(ComplianceState.AT_OR_ABOVE_CUTOFF)

        # A request that is already gone must not leave a write behind.
        req.ctx.raise_if_cancelled()
        self.ensure_artifact(app.namespace, artifact, req.ctx)

        patch = self.status_label_patch(app)
        if not existing:
            patch.append(patch_add(EXTRA_CONFIGS_PATH, []))
        patch.append(patch_add(f"{EXTRA_CONFIGS_PATH}/-", extra_config))

        log.info("appending baseline extra config '%s' for cluster '%s'", extra_config.name, cluster_id)
        return ComplianceResult(ComplianceState.PATCH_REQUIRED, patch)

    def artifact_for(self, app: App) -> Artifact:
        """The per-app artifact when one is configured for the app, else the baseline."""
        for p in self._profile.config_patches:
            if p.app_name == keys.app_name(app):
                suffix = p.config_map_suffix or p.app_name
                name = f"{self._profile.artifact_name}-{suffix}"[:MAX_ARTIFACT_NAME_LENGTH]
                return Artifact(name=name, content=p.values)
        return Artifact(name=self._profile.artifact_name, content=self._profile.artifact_content)

    def baseline_extra_config(self, app: App, name: Optional[str] = None) -> ExtraConfig:
        return ExtraConfig(
            kind="configMap",
            name=name or self._profile.artifact_name,
            namespace=app.namespace,
            priority=self._profile.priority,
        )

    def is_patched(self, existing: List[ExtraConfig], extra_config: ExtraConfig) -> bool:
        if self._profile.match_any_position:
            return extra_config in existing
        return bool(existing) and existing[-1] == extra_config

    def status_label_patch(self, app: App) -> List[PatchOperation]:
        label = self._profile.status_label
        if not label or app.labels.get(label) == self._profile.status_label_value:
            return []
        patch: List[PatchOperation] = []
        if not app.labels:
            patch.append(patch_add("/metadata/labels", {}))
        patch.append(patch_add(f"/metadata/labels/{escape_path_segment(label)}", self._profile.status_label_value))
        return patch

    def status_label_disabled(self, cluster: Dict[str, Any], cluster_id: str) -> bool:
        """True when the Cluster opted out of PSPs; a missing label means it has not yet."""
        label = self._profile.status_label
        labels = (cluster.get("metadata") or {}).get("labels") or {}
        if label not in labels:
            return False
        if labels[label] != self._profile.status_label_value:
            raise AdmissionError(
                ErrorKind.COMPLIANCE,
                f"Cluster '{cluster_id}' label '{label}' is not set to '{self._profile.status_label_value}'",
            )
        return True

    def find_cluster(self, cluster_id: str, ctx: RequestContext, *, required: bool = True) -> Optional[Dict[str, Any]]:
        # Cluster names are unique across namespaces; the namespace is not guessed.
        try:
            clusters = self._store.list(KIND_CLUSTER, ctx, field_selector=f"metadata.name={cluster_id}")
        except AdmissionError as e:
            if is_kind(e, ErrorKind.CANCELLED):
                raise
            raise AdmissionError(ErrorKind.COMPLIANCE, "error listing Clusters") from e

        matches = [c for c in clusters if ((c.get("metadata") or {}).get("name") or "") == cluster_id]
        if not matches and not required:
            return None
        if len(matches) != 1:
            raise AdmissionError(
                ErrorKind.COMPLIANCE,
                f"could not find one Cluster CR matching '{cluster_id}', found {len(matches)}",
            )
        return matches[0]

    def resolve_release_version(self, cluster_id: str, ctx: RequestContext) -> semver.Version:
        cluster = self.find_cluster(cluster_id, ctx)
        labels = (cluster.get("metadata") or {}).get("labels") or {}
        raw = labels.get(keys.LABEL_RELEASE_VERSION)
        if not raw:
            raise AdmissionError(ErrorKind.COMPLIANCE, f"error inferring Release version for Cluster '{cluster_id}'")

        try:
            return parse_version(raw)
        except ValueError as e:
            raise AdmissionError(ErrorKind.COMPLIANCE, f"error parsing Release version '{raw}' as semver") from e

    def ensure_artifact(self, namespace: str, artifact: Artifact, ctx: RequestContext) -> None:
        """Create the artifact ConfigMap, or overwrite it in place when it already exists."""
        cm = self._config_map(namespace, artifact)
        try:
            self._store.create(cm, ctx)
            logger.debug("created configmap '%s' in '%s' namespace", artifact.name, namespace)
            return
        except AdmissionError as e:
            if is_kind(e, ErrorKind.CANCELLED):
                raise
            if not is_kind(e, ErrorKind.ALREADY_EXISTS):
                raise AdmissionError(ErrorKind.COMPLIANCE, f"error creating configmap '{artifact.name}'") from e

        try:
            self._store.update(cm, ctx)
        except AdmissionError as e:
            if is_kind(e, ErrorKind.CANCELLED):
                raise
            raise AdmissionError(ErrorKind.COMPLIANCE, f"error updating configmap '{artifact.name}'") from e
        logger.debug("updated configmap '%s' in '%s' namespace", artifact.name, namespace)

    def _config_map(self, namespace: str, artifact: Artifact) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": KIND_CONFIG_MAP,
            "metadata": {
                "name": artifact.name,
                "namespace": namespace,
                "labels": {keys.LABEL_MANAGED_BY: keys.PROJECT_NAME},
            },
            "data": {"values": artifact.content},
        }
