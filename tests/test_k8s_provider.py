from __future__ import annotations

from typing import Any, Dict, List

import pytest
from kubernetes.client.rest import ApiException


class _FakeCoreV1:
    def __init__(self) -> None:
        self.calls: List[Any] = []
        self.create_error: Exception | None = None

    def read_namespaced_config_map(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("read_namespaced_config_map", kwargs))
        if kwargs["name"] == "missing":
            raise ApiException(status=404, reason="Not Found")
        return {"metadata": {"name": kwargs["name"], "namespace": kwargs["namespace"]}}

    def create_namespaced_config_map(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("create_namespaced_config_map", kwargs))
        if self.create_error is not None:
            raise self.create_error
        return kwargs["body"]

    def replace_namespaced_config_map(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("replace_namespaced_config_map", kwargs))
        return kwargs["body"]


class _FakeCustomObjects:
    def __init__(self) -> None:
        self.calls: List[Any] = []

    def list_cluster_custom_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("list_cluster_custom_object", kwargs))
        return {"items": [{"metadata": {"name": "abc01", "namespace": "org-acme"}}]}

    def get_cluster_custom_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("get_cluster_custom_object", kwargs))
        raise ApiException(status=500, reason="Internal Server Error")


def _store(monkeypatch: pytest.MonkeyPatch):
    from admission.providers import k8s_provider

    core, custom = _FakeCoreV1(), _FakeCustomObjects()
    monkeypatch.setattr(k8s_provider.client, "CoreV1Api", lambda _api_client: core)
    monkeypatch.setattr(k8s_provider.client, "CustomObjectsApi", lambda _api_client: custom)
    return k8s_provider.KubernetesObjectStore(api_client=object()), core, custom


def test_get_maps_404_to_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext
    from admission.errors import AdmissionError, ErrorKind, is_kind

    store, core, _ = _store(monkeypatch)
    assert store.get("ConfigMap", "abc01", "values", RequestContext())["metadata"]["name"] == "values"

    with pytest.raises(AdmissionError) as ei:
        store.get("ConfigMap", "abc01", "missing", RequestContext())
    assert is_kind(ei.value, ErrorKind.NOT_FOUND)
    assert str(ei.value) == "ConfigMap abc01/missing not found"


def test_other_api_errors_are_store_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext
    from admission.errors import AdmissionError, ErrorKind, is_kind

    store, _, custom = _store(monkeypatch)
    with pytest.raises(AdmissionError) as ei:
        store.get("Release", "", "v25.0.0", RequestContext())
    assert is_kind(ei.value, ErrorKind.STORE_FAILURE)
    assert custom.calls[0][1]["plural"] == "releases"
    assert "namespace" not in custom.calls[0][1]


def test_list_clusters_passes_selector_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext

    store, _, custom = _store(monkeypatch)
    items = store.list("Cluster", RequestContext(timeout_seconds=10), field_selector="metadata.name=abc01")

    assert items == [{"metadata": {"name": "abc01", "namespace": "org-acme"}}]
    name, kwargs = custom.calls[0]
    assert name == "list_cluster_custom_object"
    assert kwargs["group"] == "cluster.x-k8s.io"
    assert kwargs["field_selector"] == "metadata.name=abc01"
    assert 0 < kwargs["_request_timeout"] <= 10


def test_create_conflict_is_already_exists(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext
    from admission.errors import AdmissionError, ErrorKind, is_kind

    store, core, _ = _store(monkeypatch)
    core.create_error = ApiException(status=409, reason="Conflict")
    cm = {"kind": "ConfigMap", "metadata": {"name": "pss-compliance-patch", "namespace": "abc01"}}

    with pytest.raises(AdmissionError) as ei:
        store.create(cm, RequestContext())
    assert is_kind(ei.value, ErrorKind.ALREADY_EXISTS)

    assert store.update(cm, RequestContext()) == cm
    assert core.calls[-1][0] == "replace_namespaced_config_map"
    assert core.calls[-1][1]["name"] == "pss-compliance-patch"


def test_only_config_maps_are_written(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext
    from admission.errors import AdmissionError, ErrorKind, is_kind

    store, _, _ = _store(monkeypatch)
    with pytest.raises(AdmissionError) as ei:
        store.create({"kind": "Secret", "metadata": {"name": "s", "namespace": "abc01"}}, RequestContext())
    assert is_kind(ei.value, ErrorKind.WRONG_TYPE)


def test_cancelled_context_never_reaches_api(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.core.context import RequestContext
    from admission.errors import AdmissionError, ErrorKind, is_kind

    store, core, _ = _store(monkeypatch)
    ctx = RequestContext()
    ctx.cancel()
    with pytest.raises(AdmissionError) as ei:
        store.get("ConfigMap", "abc01", "values", ctx)
    assert is_kind(ei.value, ErrorKind.CANCELLED)
    assert core.calls == []
