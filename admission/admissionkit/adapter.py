"""
AdmissionReview protocol adapter.

Turns the raw body of an admission webhook call into a typed handler chain run and
back into an AdmissionReview response:

1. content type must be application/json, body must decode as an AdmissionReview
   (otherwise HTTP 400, counted as invalid)
2. objects marked for deletion are admitted without running any handler
3. handlers run sequentially in registration order; the first handler error stops
   the chain and turns into a denial carrying the error's (terse) message
4. mutating chains concatenate every handler's patch; each patch is applied to the
   object before the next mutator runs, so later mutators see earlier edits.
   Validating chains stop at the first rejection
5. every request increments `total_requests` plus exactly one outcome counter and
   observes its duration
"""

from __future__ import annotations

import base64
import copy
import json
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jsonpatch
from pydantic import ValidationError

from admission.admissionkit.handlers import Mutator, Request, Validator
from admission.core import keys
from admission.core.context import RequestContext
from admission.core.models import (
    ADMISSION_REVIEW_KIND,
    PATCH_TYPE_JSON_PATCH,
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    App,
    Status,
)
from admission.core.patch import PatchOperation, to_json_patch
from admission.errors import AdmissionError, ErrorKind, public_message
from admission.metrics import (
    INTERNAL_ERRORS,
    INVALID_REQUESTS,
    REJECTED_REQUESTS,
    REQUEST_DURATION,
    SUCCESSFUL_REQUESTS,
    TOTAL_REQUESTS,
    MetricsSink,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

KIND_MUTATING = "mutating"
KIND_VALIDATING = "validating"


@dataclass(frozen=True)
class AdmissionHttpResult:
    status_code: int
    body: bytes = b""


def _is_json_content_type(content_type: Optional[str]) -> bool:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type == JSON_CONTENT_TYPE


def _decode_app(raw: Optional[dict], *, what: str) -> App:
    if raw is None:
        raise AdmissionError(ErrorKind.PARSING_FAILED, f"unable to parse {what}: object is missing")
    try:
        return App.model_validate(raw)
    except ValidationError as e:
        raise AdmissionError(ErrorKind.PARSING_FAILED, f"unable to parse {what}") from e


def apply_patch(doc: Dict[str, Any], ops: Sequence[PatchOperation], *, handler: str) -> Dict[str, Any]:
    """Apply one handler's operations to a copy of `doc`, the way the API server will."""
    try:
        # Values are copied too: `add` inserts them by reference.
        return jsonpatch.apply_patch(doc, copy.deepcopy([op.to_dict() for op in ops]), in_place=False)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as e:
        raise AdmissionError(ErrorKind.INVALID_PATCH, f"mutator '{handler}' produced a patch that does not apply") from e


def deny_response(uid: str, message: str) -> AdmissionResponse:
    return AdmissionResponse(uid=uid, allowed=False, result=Status(message=message))


def allow_response(uid: str, patch: Optional[Sequence[PatchOperation]] = None) -> AdmissionResponse:
    if not patch:
        return AdmissionResponse(uid=uid, allowed=True)
    return AdmissionResponse(
        uid=uid,
        allowed=True,
        patch=base64.b64encode(to_json_patch(patch)).decode("ascii"),
        patch_type=PATCH_TYPE_JSON_PATCH,
    )


def encode_review(response: AdmissionResponse) -> bytes:
    review = AdmissionReview(response=response)
    return json.dumps(review.to_dict()).encode("utf-8")


class AdmissionAdapter:
    kind: str = ""
    role: str = ""

    def __init__(self, *, resource: str, metrics: MetricsSink) -> None:
        if not resource:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, f"{type(self).__name__}.resource must not be empty")
        if metrics is None:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, f"{type(self).__name__}.metrics must not be empty")
        self.resource = resource
        self._metrics = metrics

    def handle(
        self,
        body: bytes,
        content_type: Optional[str],
        ctx: Optional[RequestContext] = None,
    ) -> AdmissionHttpResult:
        ctx = ctx or RequestContext()
        start = time.monotonic()
        self._metrics.increment_counter(TOTAL_REQUESTS, self.kind, self.resource)
        try:
            outcome, result = self._handle(body, content_type, ctx)
            self._metrics.increment_counter(outcome, self.kind, self.resource)
            return result
        finally:
            self._metrics.observe_duration(
                REQUEST_DURATION, self.kind, self.resource, seconds=time.monotonic() - start
            )

    def _handle(self, body: bytes, content_type: Optional[str], ctx: RequestContext) -> Tuple[str, AdmissionHttpResult]:
        log = ctx.logger(logger, resource=f"{self.resource}-{self.kind}")

        if not _is_json_content_type(content_type):
            log.error("invalid content-type: %s", content_type)
            return INVALID_REQUESTS, AdmissionHttpResult(status_code=400)

        try:
            review = AdmissionReview.model_validate_json(body)
        except (ValidationError, ValueError) as e:
            log.error("unable to parse admission review request: %s", e)
            return INVALID_REQUESTS, AdmissionHttpResult(status_code=400)

        if review.kind != ADMISSION_REVIEW_KIND or review.request is None:
            log.error("unexpected admission review payload (kind=%s, request=%s)", review.kind, review.request is not None)
            return INVALID_REQUESTS, AdmissionHttpResult(status_code=400)

        request = review.request
        outcome, response = self._review(request, ctx)

        try:
            payload = encode_review(response)
        except (TypeError, ValueError):
            log.exception("unable to serialize response")
            return INTERNAL_ERRORS, AdmissionHttpResult(status_code=500)

        return outcome, AdmissionHttpResult(status_code=200, body=payload)

    def _review(self, request: AdmissionRequest, ctx: RequestContext) -> Tuple[str, AdmissionResponse]:
        log = ctx.logger(logger, resource=f"{self.resource}-{self.kind}", obj=f"{request.namespace}/{request.name}")

        try:
            app = _decode_app(request.object, what="app")
            old_app = _decode_app(request.old_object, what="current app") if request.old_object is not None else None
        except AdmissionError as e:
            log.error("%s", e)
            return INTERNAL_ERRORS, deny_response(request.uid, public_message(e))

        # Teardown must never be blocked: no handler runs for deleted objects.
        if keys.is_deleted(app):
            log.debug("admitted deletion of app '%s'", keys.object_ref(app))
            return SUCCESSFUL_REQUESTS, allow_response(request.uid)

        log = ctx.logger(
            logger,
            resource=f"{self.resource}-{self.kind}",
            obj=keys.object_ref(app),
            version=app.metadata.resource_version,
        )
        req = Request(
            app=app,
            old_app=old_app,
            operation=request.operation,
            user_info=request.user_info,
            dry_run=request.is_dry_run,
            ctx=ctx,
            log=log,
        )

        try:
            return self._run_chain(request, req)
        except Exception as e:
            if isinstance(e, AdmissionError):
                log.error("computing %s failed: %s", self.kind, e, exc_info=e.__cause__ is not None)
            else:
                log.exception("computing %s failed", self.kind)
            return INTERNAL_ERRORS, deny_response(request.uid, public_message(e))

    def _run_chain(self, request: AdmissionRequest, req: Request) -> Tuple[str, AdmissionResponse]:
        raise NotImplementedError

    def _handler_request(self, req: Request, name: str) -> Request:
        log = req.ctx.logger(
            logger,
            resource=f"{name}-{self.role}",
            obj=keys.object_ref(req.app),
            version=req.app.metadata.resource_version,
        )
        return replace(req, log=log)


class MutatingAdapter(AdmissionAdapter):
    kind = KIND_MUTATING
    role = "mutator"

    def __init__(self, *, resource: str, metrics: MetricsSink, chain: Sequence[Mutator]) -> None:
        super().__init__(resource=resource, metrics=metrics)
        if not chain:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "MutatingAdapter.chain must not be empty")
        self._chain: Tuple[Mutator, ...] = tuple(chain)

    def _review(self, request: AdmissionRequest, ctx: RequestContext) -> Tuple[str, AdmissionResponse]:
        if request.is_dry_run:
            logger.debug("dry-run request %s: skipping mutation", request.uid)
            return SUCCESSFUL_REQUESTS, allow_response(request.uid)
        return super()._review(request, ctx)

    def _run_chain(self, request: AdmissionRequest, req: Request) -> Tuple[str, AdmissionResponse]:
        patch: List[PatchOperation] = []
        doc: Dict[str, Any] = copy.deepcopy(request.object or {})
        for m in self._chain:
            hreq = self._handler_request(req, m.name)
            hreq.log.debug("computing mutation")
            ops = m.mutate(hreq)
            hreq.log.debug("computed mutation (%d patches)", len(ops))
            if not ops:
                continue
            patch.extend(ops)
            doc = apply_patch(doc, ops, handler=m.name)
            req = replace(req, app=_decode_app(doc, what="patched app"))

        req.log.debug("admitted with %d patches", len(patch))
        return SUCCESSFUL_REQUESTS, allow_response(request.uid, patch)


class ValidatingAdapter(AdmissionAdapter):
    kind = KIND_VALIDATING
    role = "validator"

    def __init__(self, *, resource: str, metrics: MetricsSink, chain: Sequence[Validator]) -> None:
        super().__init__(resource=resource, metrics=metrics)
        if not chain:
            raise AdmissionError(ErrorKind.INVALID_CONFIG, "ValidatingAdapter.chain must not be empty")
        self._chain: Tuple[Validator, ...] = tuple(chain)

    def _run_chain(self, request: AdmissionRequest, req: Request) -> Tuple[str, AdmissionResponse]:
        for v in self._chain:
            hreq = self._handler_request(req, v.name)
            hreq.log.debug("computing validation")
            rejection = v.validate(hreq)
            if rejection is not None:
                hreq.log.info("computed validation: reject with message '%s'", rejection.message)
                return REJECTED_REQUESTS, deny_response(request.uid, rejection.message)
            hreq.log.debug("computed validation: accept")

        return SUCCESSFUL_REQUESTS, allow_response(request.uid)
