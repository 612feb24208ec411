from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_PORT = 8443

DEFAULT_VINTAGE_PROVIDERS: Tuple[str, ...] = ("aws", "azure", "kvm")
DEFAULT_CAPI_PROVIDERS: Tuple[str, ...] = ("capa", "capz", "cloud-director", "vsphere")

COMPLIANCE_VARIANT_PSS = "pss"
COMPLIANCE_VARIANT_PSP_REMOVAL = "psp-removal"

DEFAULT_BASELINE_ARTIFACT_CONTENT = """global:
  podSecurityStandards:
    enforced: true"""


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, "") or "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


@dataclass(frozen=True)
class ControllerConfig:
    # Server
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    metrics_port: int = 0  # 0: metrics only on the main listener
    tls_cert_file: Optional[str] = None
    tls_key_file: Optional[str] = None
    log_level: str = "info"

    # Installation provider of the management cluster (aws, azure, kvm, capa, ...)
    provider: str = ""

    # Security policy
    app_blacklist: Tuple[str, ...] = ()
    catalog_blacklist: Tuple[str, ...] = ()
    group_whitelist: Tuple[str, ...] = ()
    user_whitelist: Tuple[str, ...] = ()  # prefix match
    namespace_blacklist: Tuple[str, ...] = ()  # leading/trailing "-" makes an entry a wildcard

    # Compliance baseline; an empty cutoff or artifact name means the variant default
    compliance_variant: str = COMPLIANCE_VARIANT_PSS
    vintage_providers: Tuple[str, ...] = DEFAULT_VINTAGE_PROVIDERS
    capi_providers: Tuple[str, ...] = DEFAULT_CAPI_PROVIDERS  # psp-removal only
    cutoff_version: str = ""
    baseline_artifact_name: str = ""
    baseline_artifact_content: str = field(default=DEFAULT_BASELINE_ARTIFACT_CONTENT, repr=False)
    config_patches_file: Optional[str] = None  # psp-removal only: YAML list of per-app artifacts

    def with_overrides(self, **overrides: Any) -> "ControllerConfig":
        """Return a copy with non-empty overrides applied (CLI flags win over env)."""
        changes: Dict[str, Any] = {}
        for k, v in overrides.items():
            if v is None or v == [] or v == ():
                continue
            changes[k] = tuple(v) if isinstance(v, list) else v
        return replace(self, **changes)


def load_config() -> ControllerConfig:
    """
    Load controller configuration from env (ConfigMap/Secret friendly).

    Recommended vars:
    - ADMISSION_ADDRESS=0.0.0.0
    - ADMISSION_PORT=8443
    - METRICS_PORT=8000
    - TLS_CERT_FILE=/certs/tls.crt
    - TLS_KEY_FILE=/certs/tls.key
    - PROVIDER=aws
    - WHITELIST_GROUPS=giantswarm:giantswarm:giantswarm-admins
    - WHITELIST_USERS=system:serviceaccount:giantswarm:,system:serviceaccount:kube-system:
    - BLACKLIST_APPS=cert-manager-app
    - BLACKLIST_CATALOGS=giantswarm,control-plane-catalog
    - BLACKLIST_NAMESPACES=giantswarm,kube-,-prometheus
    - COMPLIANCE_VARIANT=pss            (or psp-removal)
    - VINTAGE_PROVIDERS=aws,azure,kvm
    - CAPI_PROVIDERS=capa,capz,cloud-director,vsphere
    - PSS_CUTOFF_VERSION=v19.2.0
    - BASELINE_ARTIFACT_NAME=pss-compliance-patch
    - COMPLIANCE_CONFIG_PATCHES_FILE=/etc/admission/config-patches.yaml
    - LOG_LEVEL=info
    """

    vintage = _split_csv(os.getenv("VINTAGE_PROVIDERS", ""))
    capi = _split_csv(os.getenv("CAPI_PROVIDERS", ""))

    return ControllerConfig(
        address=_env_str("ADMISSION_ADDRESS", DEFAULT_ADDRESS),
        port=max(1, min(_env_int("ADMISSION_PORT", DEFAULT_PORT), 65535)),
        metrics_port=max(0, min(_env_int("METRICS_PORT", 0), 65535)),
        tls_cert_file=_env_str("TLS_CERT_FILE") or None,
        tls_key_file=_env_str("TLS_KEY_FILE") or None,
        log_level=_env_str("LOG_LEVEL", "info").lower(),
        provider=_env_str("PROVIDER").lower(),
        app_blacklist=tuple(_split_csv(os.getenv("BLACKLIST_APPS", ""))),
        catalog_blacklist=tuple(_split_csv(os.getenv("BLACKLIST_CATALOGS", ""))),
        group_whitelist=tuple(_split_csv(os.getenv("WHITELIST_GROUPS", ""))),
        user_whitelist=tuple(_split_csv(os.getenv("WHITELIST_USERS", ""))),
        namespace_blacklist=tuple(_split_csv(os.getenv("BLACKLIST_NAMESPACES", ""))),
        compliance_variant=_env_str("COMPLIANCE_VARIANT", COMPLIANCE_VARIANT_PSS).lower(),
        vintage_providers=tuple(p.lower() for p in vintage) if vintage else DEFAULT_VINTAGE_PROVIDERS,
        capi_providers=tuple(p.lower() for p in capi) if capi else DEFAULT_CAPI_PROVIDERS,
        cutoff_version=_env_str("PSS_CUTOFF_VERSION"),
        baseline_artifact_name=_env_str("BASELINE_ARTIFACT_NAME"),
        baseline_artifact_content=os.getenv("BASELINE_ARTIFACT_CONTENT") or DEFAULT_BASELINE_ARTIFACT_CONTENT,
        config_patches_file=_env_str("COMPLIANCE_CONFIG_PATCHES_FILE") or None,
    )
