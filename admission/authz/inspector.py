from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

from admission.config import ControllerConfig
from admission.core import keys
from admission.core.models import App, UserInfo

logger = logging.getLogger(__name__)

APP_NOT_ALLOWED_TEMPLATE = "installing '{name}' from '{catalog}' catalog is not allowed"
REFERENCE_NOT_ALLOWED_TEMPLATE = "references to '{namespace}' namespace not allowed"

# Namespace blacklist entries starting or ending with this marker are wildcards.
WILDCARD_MARKER = "-"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class InspectorConfig:
    app_blacklist: Tuple[str, ...] = ()
    catalog_blacklist: Tuple[str, ...] = ()
    group_whitelist: Tuple[str, ...] = ()
    user_whitelist: Tuple[str, ...] = ()
    namespace_blacklist: Tuple[str, ...] = ()

    @classmethod
    def from_controller_config(cls, cfg: ControllerConfig) -> "InspectorConfig":
        return cls(
            app_blacklist=tuple(cfg.app_blacklist),
            catalog_blacklist=tuple(cfg.catalog_blacklist),
            group_whitelist=tuple(cfg.group_whitelist),
            user_whitelist=tuple(cfg.user_whitelist),
            namespace_blacklist=tuple(cfg.namespace_blacklist),
        )


def is_dynamic_entry(entry: str) -> bool:
    return entry.startswith(WILDCARD_MARKER) or entry.endswith(WILDCARD_MARKER)


class Inspector:
    """
    Checks App CRs against the security policy:
    - blacklisted apps coming from blacklisted catalogs
    - references to blacklisted namespaces in config, userConfig and extraConfigs

    Whitelisted actors and apps living in a protected namespace bypass both checks.
    Immutable after construction; safe to share between concurrent requests.
    """

    def __init__(self, config: InspectorConfig) -> None:
        self._app_blacklist: FrozenSet[str] = frozenset(config.app_blacklist)
        self._catalog_blacklist: FrozenSet[str] = frozenset(config.catalog_blacklist)
        self._group_whitelist: FrozenSet[str] = frozenset(config.group_whitelist)
        self._user_whitelist: Tuple[str, ...] = tuple(u for u in config.user_whitelist if u)
        self._dynamic_namespace_blacklist: Tuple[str, ...] = tuple(
            ns for ns in config.namespace_blacklist if ns and is_dynamic_entry(ns)
        )
        self._fixed_namespace_blacklist: FrozenSet[str] = frozenset(
            ns for ns in config.namespace_blacklist if ns and not is_dynamic_entry(ns)
        )

    @property
    def fixed_namespace_blacklist(self) -> FrozenSet[str]:
        return self._fixed_namespace_blacklist

    @property
    def dynamic_namespace_blacklist(self) -> Tuple[str, ...]:
        return self._dynamic_namespace_blacklist

    def inspect(self, actor: UserInfo, app: App) -> Decision:
        if self.is_whitelisted_actor(actor):
            logger.debug("skipping validation due to whitelisted user '%s'", actor.username)
            return Decision.allow()

        # Apps living in a protected namespace are installed by platform operators.
        if self.is_private_app(app):
            logger.debug("skipping validation for app coming from private '%s' namespace", app.namespace)
            return Decision.allow()

        reason = self.blacklisted_app_reason(app)
        if reason:
            logger.info("rejecting blacklisted '%s' app in '%s' namespace", app.name, app.namespace)
            return Decision.deny(reason)

        reason = self.blacklisted_reference_reason(app)
        if reason:
            logger.info("rejecting '%s' app in '%s' namespace due to blacklisted references", app.name, app.namespace)
            return Decision.deny(reason)

        return Decision.allow()

    def is_whitelisted_actor(self, actor: UserInfo) -> bool:
        if any(actor.username.startswith(u) for u in self._user_whitelist):
            return True
        return any(g in self._group_whitelist for g in actor.groups)

    def is_private_app(self, app: App) -> bool:
        return app.namespace in self._fixed_namespace_blacklist

    def blacklisted_app_reason(self, app: App) -> Optional[str]:
        name = keys.app_name(app)
        catalog = keys.catalog_name(app)
        # Both must match: an app may be blacklisted only when sourced from a given catalog.
        if name in self._app_blacklist and catalog in self._catalog_blacklist:
            return APP_NOT_ALLOWED_TEMPLATE.format(name=name, catalog=catalog)
        return None

    def blacklisted_reference_reason(self, app: App) -> Optional[str]:
        for ns in referenced_namespaces(app):
            if self.is_blacklisted_namespace(ns):
                return REFERENCE_NOT_ALLOWED_TEMPLATE.format(namespace=ns)
        return None

    def is_blacklisted_namespace(self, namespace: str) -> bool:
        if namespace in self._fixed_namespace_blacklist:
            return True
        return any(namespace.startswith(p) or namespace.endswith(p) for p in self._dynamic_namespace_blacklist)


def referenced_namespaces(app: App) -> List[str]:
    """Namespaces of every configuration source referenced by the app (empty ones skipped)."""
    candidates: Iterable[str] = [
        keys.app_config_map_namespace(app),
        keys.app_secret_namespace(app),
        keys.user_config_map_namespace(app),
        keys.user_secret_namespace(app),
        *(ec.namespace for ec in keys.extra_configs(app)),
    ]
    return [ns for ns in candidates if ns]
