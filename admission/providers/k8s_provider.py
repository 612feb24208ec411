"""Kubernetes object store used by validators and mutators.

Objects are exchanged as plain dicts in their Kubernetes JSON shape. Errors are mapped
onto `AdmissionError` kinds so callers branch on `NOT_FOUND` / `ALREADY_EXISTS` instead
of HTTP status codes.

Every call takes the `RequestContext` of the admission request it serves: a cancelled
or expired request never reaches the API server, and the remaining request lifetime is
passed down as the client timeout.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from admission.core.context import RequestContext
from admission.errors import AdmissionError, ErrorKind

logger = logging.getLogger(__name__)

KIND_APP = "App"
KIND_CATALOG = "Catalog"
KIND_CLUSTER = "Cluster"
KIND_CONFIG_MAP = "ConfigMap"
KIND_RELEASE = "Release"
KIND_SECRET = "Secret"


@dataclass(frozen=True)
class CustomResource:
    group: str
    version: str
    plural: str
    namespaced: bool = True


CUSTOM_RESOURCES: Dict[str, CustomResource] = {
    KIND_APP: CustomResource("application.giantswarm.io", "v1alpha1", "apps"),
    KIND_CATALOG: CustomResource("application.giantswarm.io", "v1alpha1", "catalogs"),
    KIND_CLUSTER: CustomResource("cluster.x-k8s.io", "v1beta1", "clusters"),
    KIND_RELEASE: CustomResource("release.giantswarm.io", "v1alpha1", "releases", namespaced=False),
}

CORE_KINDS = (KIND_CONFIG_MAP, KIND_SECRET)


@runtime_checkable
class ObjectStore(Protocol):
    def get(self, kind: str, namespace: str, name: str, ctx: RequestContext) -> Dict[str, Any]: ...

    def list(
        self,
        kind: str,
        ctx: RequestContext,
        *,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...

    def create(self, obj: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]: ...

    def update(self, obj: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]: ...


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    return obj.get("metadata") or {}


def _describe(kind: str, namespace: Optional[str], name: Optional[str]) -> str:
    if namespace and name:
        return f"{kind} {namespace}/{name}"
    return f"{kind} {name or namespace or ''}".rstrip()


def _map_api_error(e: ApiException, *, action: str, what: str) -> AdmissionError:
    if e.status == 404:
        return AdmissionError(ErrorKind.NOT_FOUND, f"{what} not found")
    if e.status == 409 and action == "create":
        return AdmissionError(ErrorKind.ALREADY_EXISTS, f"{what} already exists")
    return AdmissionError(ErrorKind.STORE_FAILURE, f"failed to {action} {what}: {e.reason}")


class KubernetesObjectStore:
    """ObjectStore backed by the official kubernetes client (in-cluster config first)."""

    def __init__(self, api_client: Optional[client.ApiClient] = None) -> None:
        self._api_client = api_client
        self._core_v1: Optional[client.CoreV1Api] = None
        self._custom: Optional[client.CustomObjectsApi] = None
        self._init_lock = threading.Lock()

    def _ensure_clients(self) -> None:
        if self._core_v1 is not None and self._custom is not None:
            return

        with self._init_lock:
            if self._core_v1 is not None and self._custom is not None:
                return

            if self._api_client is None:
                try:
                    config.load_incluster_config()
                except config.ConfigException:
                    config.load_kube_config()
                self._api_client = client.ApiClient()

            self._core_v1 = client.CoreV1Api(self._api_client)
            self._custom = client.CustomObjectsApi(self._api_client)

    def _call(self, ctx: RequestContext, action: str, what: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        ctx.raise_if_cancelled()
        self._ensure_clients()

        timeout = ctx.remaining_seconds()
        if timeout is not None:
            kwargs["_request_timeout"] = timeout

        try:
            return fn(**kwargs)
        except ApiException as e:
            raise _map_api_error(e, action=action, what=what) from e
        except AdmissionError:
            raise
        except Exception as e:
            raise AdmissionError(ErrorKind.STORE_FAILURE, f"failed to {action} {what}") from e

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        assert self._api_client is not None
        return self._api_client.sanitize_for_serialization(obj)

    def get(self, kind: str, namespace: str, name: str, ctx: RequestContext) -> Dict[str, Any]:
        what = _describe(kind, namespace, name)
        self._ensure_clients()
        assert self._core_v1 is not None and self._custom is not None

        if kind == KIND_CONFIG_MAP:
            obj = self._call(ctx, "get", what, self._core_v1.read_namespaced_config_map, name=name, namespace=namespace)
        elif kind == KIND_SECRET:
            obj = self._call(ctx, "get", what, self._core_v1.read_namespaced_secret, name=name, namespace=namespace)
        else:
            cr = self._resource(kind)
            if cr.namespaced:
                obj = self._call(
                    ctx,
                    "get",
                    what,
                    self._custom.get_namespaced_custom_object,
                    group=cr.group,
                    version=cr.version,
                    namespace=namespace,
                    plural=cr.plural,
                    name=name,
                )
            else:
                obj = self._call(
                    ctx,
                    "get",
                    what,
                    self._custom.get_cluster_custom_object,
                    group=cr.group,
                    version=cr.version,
                    plural=cr.plural,
                    name=name,
                )
        return self._to_dict(obj)

    def list(
        self,
        kind: str,
        ctx: RequestContext,
        *,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        what = f"{kind} list"
        self._ensure_clients()
        assert self._core_v1 is not None and self._custom is not None

        selectors: Dict[str, Any] = {}
        if field_selector:
            selectors["field_selector"] = field_selector
        if label_selector:
            selectors["label_selector"] = label_selector

        if kind in CORE_KINDS:
            if kind == KIND_CONFIG_MAP:
                fn = self._core_v1.list_namespaced_config_map if namespace else self._core_v1.list_config_map_for_all_namespaces
            else:
                fn = self._core_v1.list_namespaced_secret if namespace else self._core_v1.list_secret_for_all_namespaces
            if namespace:
                selectors["namespace"] = namespace
            result = self._to_dict(self._call(ctx, "list", what, fn, **selectors))
        else:
            cr = self._resource(kind)
            args: Dict[str, Any] = dict(group=cr.group, version=cr.version, plural=cr.plural, **selectors)
            if namespace and cr.namespaced:
                result = self._call(ctx, "list", what, self._custom.list_namespaced_custom_object, namespace=namespace, **args)
            else:
                result = self._call(ctx, "list", what, self._custom.list_cluster_custom_object, **args)

        return list((result or {}).get("items") or [])

    def create(self, obj: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]:
        return self._write(obj, ctx, action="create")

    def update(self, obj: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]:
        return self._write(obj, ctx, action="update")

    def _write(self, obj: Dict[str, Any], ctx: RequestContext, *, action: str) -> Dict[str, Any]:
        kind = obj.get("kind") or ""
        meta = _metadata(obj)
        namespace = meta.get("namespace") or ""
        name = meta.get("name") or ""
        what = _describe(kind, namespace, name)

        self._ensure_clients()
        assert self._core_v1 is not None

        if kind == KIND_CONFIG_MAP:
            if action == "create":
                fn, kwargs = self._core_v1.create_namespaced_config_map, {"namespace": namespace, "body": obj}
            else:
                fn, kwargs = self._core_v1.replace_namespaced_config_map, {"name": name, "namespace": namespace, "body": obj}
        else:
            # Only ConfigMaps are ever written by this controller.
            raise AdmissionError(ErrorKind.WRONG_TYPE, f"writing {kind or 'untyped'} objects is not supported")

        logger.debug("%s %s", action, what)
        return self._to_dict(self._call(ctx, action, what, fn, **kwargs))

    @staticmethod
    def _resource(kind: str) -> CustomResource:
        cr = CUSTOM_RESOURCES.get(kind)
        if cr is None:
            raise AdmissionError(ErrorKind.WRONG_TYPE, f"unsupported kind {kind!r}")
        return cr


def get_object_store() -> ObjectStore:
    """Seam for swapping store implementations (tests inject an in-memory store)."""
    return KubernetesObjectStore()
