"""Label names and accessors for App CR fields."""

from __future__ import annotations

from typing import List

from admission.core.models import App, ExtraConfig

PROJECT_NAME = "app-admission-controller"

LABEL_APP = "app"
LABEL_APP_KUBERNETES_NAME = "app.kubernetes.io/name"
LABEL_APP_OPERATOR_VERSION = "app-operator.giantswarm.io/version"
LABEL_CLUSTER = "giantswarm.io/cluster"
LABEL_MANAGED_BY = "giantswarm.io/managed-by"
LABEL_RELEASE_VERSION = "release.giantswarm.io/version"

# App CRs carrying this app-operator version are reconciled by the unique
# (management cluster) app-operator instance.
UNIQUE_APP_OPERATOR_VERSION = "0.0.0"
MANAGEMENT_CLUSTER_NAMESPACE = "giantswarm"


def is_deleted(app: App) -> bool:
    return bool(app.metadata.deletion_timestamp)


def app_name(app: App) -> str:
    """Release name of the app (spec.name)."""
    return app.spec.name


def catalog_name(app: App) -> str:
    return app.spec.catalog


def cluster_label(app: App) -> str:
    return app.labels.get(LABEL_CLUSTER, "")


def version_label(app: App) -> str:
    return app.labels.get(LABEL_APP_OPERATOR_VERSION, "")


def app_config_map_name(app: App) -> str:
    return app.spec.config.config_map.name


def app_config_map_namespace(app: App) -> str:
    return app.spec.config.config_map.namespace


def app_secret_name(app: App) -> str:
    return app.spec.config.secret.name


def app_secret_namespace(app: App) -> str:
    return app.spec.config.secret.namespace


def user_config_map_name(app: App) -> str:
    return app.spec.user_config.config_map.name


def user_config_map_namespace(app: App) -> str:
    return app.spec.user_config.config_map.namespace


def user_secret_name(app: App) -> str:
    return app.spec.user_config.secret.name


def user_secret_namespace(app: App) -> str:
    return app.spec.user_config.secret.namespace


def extra_configs(app: App) -> List[ExtraConfig]:
    return list(app.spec.extra_configs)


def in_cluster(app: App) -> bool:
    return app.spec.kube_config.in_cluster


def kube_config_secret_name(app: App) -> str:
    return app.spec.kube_config.secret.name


def kube_config_secret_namespace(app: App) -> str:
    return app.spec.kube_config.secret.namespace


def kube_config_context_name(app: App) -> str:
    return app.spec.kube_config.context.name


def cluster_config_map_name(app: App) -> str:
    return f"{app.namespace}-cluster-values"


def cluster_kube_config_secret_name(app: App) -> str:
    return f"{app.namespace}-kubeconfig"


def is_in_org_namespace(app: App) -> bool:
    return app.namespace.startswith("org-")


def object_ref(app: App) -> str:
    """`namespace/name` for logs; falls back to generateName before creation."""
    name = app.name or (f"{app.metadata.generate_name}<generated>" if app.metadata.generate_name else "<unknown>")
    return f"{app.namespace}/{name}" if app.namespace else name


def is_management_cluster_bundle(app: App) -> bool:
    """Bundle apps carry a cluster label but are installed into the management cluster."""
    return version_label(app) == UNIQUE_APP_OPERATOR_VERSION and app.namespace == MANAGEMENT_CLUSTER_NAMESPACE
