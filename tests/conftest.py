"""
Pytest config.

Local imports like `import admission` rely on the repo root being on sys.path. In some
environments (e.g. when invoking a global `pytest` entrypoint) that doesn't happen
reliably during collection, so we pin the behavior here.
"""

from __future__ import annotations

import base64
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from admission.errors import AdmissionError, ErrorKind  # noqa: E402


class FakeStore:
    """In-memory ObjectStore. `field_selector` is ignored so callers must filter by name."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.errors: Dict[Tuple[str, str], AdmissionError] = {}
        self.calls: List[Tuple[str, str, str, str]] = []

    def add(self, kind: str, obj: Dict[str, Any]) -> None:
        meta = obj.get("metadata") or {}
        self.objects[(kind, meta.get("namespace") or "", meta.get("name") or "")] = obj

    def fail(self, method: str, kind: str, err: AdmissionError) -> None:
        self.errors[(method, kind)] = err

    def _check(self, method: str, kind: str, ctx) -> None:
        ctx.raise_if_cancelled()
        err = self.errors.get((method, kind))
        if err is not None:
            raise err

    def get(self, kind: str, namespace: str, name: str, ctx) -> Dict[str, Any]:
        self.calls.append(("get", kind, namespace or "", name))
        self._check("get", kind, ctx)
        obj = self.objects.get((kind, namespace or "", name))
        if obj is None:
            raise AdmissionError(ErrorKind.NOT_FOUND, f"{kind} {namespace}/{name} not found")
        return obj

    def list(
        self,
        kind: str,
        ctx,
        *,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(("list", kind, namespace or "", field_selector or ""))
        self._check("list", kind, ctx)
        return [o for (k, ns, _), o in self.objects.items() if k == kind and (namespace is None or ns == namespace)]

    def create(self, obj: Dict[str, Any], ctx) -> Dict[str, Any]:
        kind = obj.get("kind") or ""
        meta = obj.get("metadata") or {}
        self.calls.append(("create", kind, meta.get("namespace") or "", meta.get("name") or ""))
        self._check("create", kind, ctx)
        key = (kind, meta.get("namespace") or "", meta.get("name") or "")
        if key in self.objects:
            raise AdmissionError(ErrorKind.ALREADY_EXISTS, f"{kind} {key[1]}/{key[2]} already exists")
        self.objects[key] = obj
        return obj

    def update(self, obj: Dict[str, Any], ctx) -> Dict[str, Any]:
        kind = obj.get("kind") or ""
        meta = obj.get("metadata") or {}
        self.calls.append(("update", kind, meta.get("namespace") or "", meta.get("name") or ""))
        self._check("update", kind, ctx)
        self.objects[(kind, meta.get("namespace") or "", meta.get("name") or "")] = obj
        return obj

    def writes(self) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] in ("create", "update")]


class FakeMetrics:
    def __init__(self) -> None:
        self.counters: Dict[Tuple[str, ...], int] = {}
        self.durations: List[Tuple[str, Tuple[str, ...], float]] = []

    def increment_counter(self, name: str, *labels: str) -> None:
        key = (name, *labels)
        self.counters[key] = self.counters.get(key, 0) + 1

    def observe_duration(self, name: str, *labels: str, seconds: float) -> None:
        self.durations.append((name, labels, seconds))

    def count(self, name: str) -> int:
        return sum(v for k, v in self.counters.items() if k[0] == name)


def make_app(
    name: str = "my-app",
    namespace: str = "abc01",
    *,
    labels: Optional[Dict[str, str]] = None,
    spec: Optional[Dict[str, Any]] = None,
    deletion_timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace, "resourceVersion": "42"}
    if labels is not None:
        metadata["labels"] = labels
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    return {
        "apiVersion": "application.giantswarm.io/v1alpha1",
        "kind": "App",
        "metadata": metadata,
        "spec": spec if spec is not None else {"name": "kiam", "namespace": "kube-system", "catalog": "default"},
    }


def make_review(
    obj: Optional[Dict[str, Any]],
    *,
    uid: str = "705ab4f5-6393-11e8-b7cc-42010a800002",
    operation: str = "CREATE",
    old_obj: Optional[Dict[str, Any]] = None,
    username: str = "jane",
    groups: Optional[List[str]] = None,
    dry_run: bool = False,
) -> bytes:
    request: Dict[str, Any] = {
        "uid": uid,
        "kind": {"group": "application.giantswarm.io", "version": "v1alpha1", "kind": "App"},
        "resource": {"group": "application.giantswarm.io", "version": "v1alpha1", "resource": "apps"},
        "namespace": (obj or {}).get("metadata", {}).get("namespace", ""),
        "name": (obj or {}).get("metadata", {}).get("name", ""),
        "operation": operation,
        "userInfo": {"username": username, "groups": groups or []},
        "object": obj,
        "dryRun": dry_run,
    }
    if old_obj is not None:
        request["oldObject"] = old_obj
    return json.dumps({"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview", "request": request}).encode()


def decode_patch(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    raw = response.get("patch")
    if not raw:
        return []
    return json.loads(base64.b64decode(raw))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def metrics() -> FakeMetrics:
    return FakeMetrics()
