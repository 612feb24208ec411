"""Per-request decision context.

Carries the request id used for log correlation and the request lifetime
(deadline + cancel flag). It is created by the HTTP layer for each AdmissionReview
and handed explicitly to every handler and store call; nothing here is shared
between requests.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, MutableMapping, Optional, Tuple

from admission.errors import AdmissionError, ErrorKind


class RequestContext:
    def __init__(self, *, request_id: Optional[str] = None, timeout_seconds: Optional[float] = None) -> None:
        self.request_id = request_id or uuid.uuid4().hex
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
        self._cancelled = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "request cancelled") -> None:
        self._reason = reason
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("request deadline exceeded")
            return True
        return False

    def remaining_seconds(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AdmissionError(ErrorKind.CANCELLED, self._reason)

    def logger(self, base: logging.Logger, *, resource: str, obj: str = "", version: str = "") -> "RequestLogger":
        return RequestLogger(
            base,
            {
                "resource": resource,
                "object": obj,
                "request": self.request_id,
                "version": version or "n/a",
            },
        )


class RequestLogger(logging.LoggerAdapter):
    """Prefixes messages with the request metadata (resource/object/request/version)."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        prefix = " ".join(f"{k}={extra[k]}" for k in ("resource", "object", "request", "version") if extra.get(k))
        return f"[{prefix}] {msg}", kwargs
