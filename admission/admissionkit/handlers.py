from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

from admission.core.context import RequestContext, RequestLogger
from admission.core.models import App, UserInfo
from admission.core.patch import PatchOperation


@dataclass(frozen=True)
class Request:
    """What a validator or mutator gets to see for one AdmissionReview."""

    app: App
    old_app: Optional[App]
    operation: str
    user_info: UserInfo
    dry_run: bool
    ctx: RequestContext
    log: RequestLogger


@dataclass(frozen=True)
class Rejection:
    message: str


def rejectf(fmt: str, *args: object) -> Rejection:
    return Rejection(message=fmt % args if args else fmt)


@runtime_checkable
class Validator(Protocol):
    name: str

    def validate(self, req: Request) -> Optional[Rejection]:
        """Return a Rejection to deny the request, None to accept it. Raise on internal errors."""
        ...


@runtime_checkable
class Mutator(Protocol):
    name: str

    def mutate(self, req: Request) -> List[PatchOperation]:
        """Return the JSON patch operations for this object, in application order."""
        ...
