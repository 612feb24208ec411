"""Error kinds shared by every admission component.

Errors are matched by kind (`is_kind(err, ErrorKind.NOT_FOUND)`), never by identity.
The message of an `AdmissionError` is what callers see on the wire, so keep it terse;
the underlying exception stays attached as `__cause__` for logs.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

INTERNAL_ERROR_MESSAGE = "internal admission controller error"


class ErrorKind(str, Enum):
    INVALID_CONFIG = "invalidConfigError"
    PARSING_FAILED = "parsingFailedError"
    WRONG_TYPE = "wrongTypeError"
    NOT_FOUND = "notFoundError"
    ALREADY_EXISTS = "alreadyExistsError"
    STORE_FAILURE = "storeFailureError"
    SECURITY_VIOLATION = "securityViolationError"
    VALIDATION = "validationError"
    COMPLIANCE = "complianceError"
    CLUSTER_APP = "clusterAppError"
    CANCELLED = "cancelledError"
    INVALID_PATCH = "invalidPatchError"


class AdmissionError(Exception):
    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"AdmissionError({self.kind.value}, {self.message!r})"


def is_kind(err: Optional[BaseException], kind: ErrorKind) -> bool:
    return isinstance(err, AdmissionError) and err.kind == kind


def public_message(err: BaseException) -> str:
    """Message safe to put into an AdmissionResponse."""
    if isinstance(err, AdmissionError):
        return err.message
    return INTERNAL_ERROR_MESSAGE
