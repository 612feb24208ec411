"""JSON-Patch (RFC 6902) operations emitted by mutators.

An ordered list of `PatchOperation` is the only output of a mutator. Operations are
applied in emission order, so a mutator creating a container (e.g. `/metadata/labels`)
must emit that `add` before the ones writing into it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel

OP_ADD = "add"
OP_REPLACE = "replace"
OP_REMOVE = "remove"


def _plain(value: Any) -> Any:
    # Models are stored in their wire shape so equality is structural on plain data.
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True, eq=True)
class PatchOperation:
    op: str
    path: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        if self.op == OP_REMOVE:
            return {"op": self.op, "path": self.path}
        return {"op": self.op, "path": self.path, "value": self.value}


def patch_add(path: str, value: Any) -> PatchOperation:
    return PatchOperation(op=OP_ADD, path=path, value=_plain(value))


def patch_replace(path: str, value: Any) -> PatchOperation:
    return PatchOperation(op=OP_REPLACE, path=path, value=_plain(value))


def patch_remove(path: str) -> PatchOperation:
    return PatchOperation(op=OP_REMOVE, path=path)


def to_json_patch(ops: Iterable[PatchOperation]) -> bytes:
    payload: List[Dict[str, Any]] = [o.to_dict() for o in ops]
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def escape_path_segment(segment: str) -> str:
    """Escape one JSON pointer segment (RFC 6901), e.g. a label key containing `/`."""
    return segment.replace("~", "~0").replace("/", "~1")
