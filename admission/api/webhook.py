"""
Admission webhook server.

Exposes the mutating and validating App admission handlers to the Kubernetes API
server over HTTPS, plus health and Prometheus endpoints:

    POST /mutate/app      MutatingAdapter (defaults, cluster app version, PSS compliance)
    POST /validate/app    ValidatingAdapter (security policy, app checks, in-cluster apps)
    GET  /healthz
    GET  /metrics
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, start_http_server

from admission.admissionkit.adapter import AdmissionAdapter, MutatingAdapter, ValidatingAdapter
from admission.app.cluster_app import ClusterAppVersionMutator
from admission.app.compliance import BaselineProfile, ComplianceMutator
from admission.app.defaults import DefaultsMutator
from admission.app.validator import AppValidator, InClusterAppValidator, SecurityValidator
from admission.authz.inspector import Inspector, InspectorConfig
from admission.config import ControllerConfig, load_config
from admission.core.context import RequestContext
from admission.metrics import PrometheusMetrics
from admission.providers.k8s_provider import ObjectStore, get_object_store

logger = logging.getLogger(__name__)

RESOURCE_APP = "app"

# Kubernetes sends the webhook timeout as a Go duration, e.g. `?timeout=10s`.
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_timeout(raw: Optional[str]) -> Optional[float]:
    """Seconds from a Go style duration; None when missing or unparsable."""
    m = _DURATION_RE.match((raw or "").strip())
    if not m:
        return None
    seconds = float(m.group(1)) * _DURATION_UNITS[m.group(2)]
    return seconds or None


@dataclass(frozen=True)
class Handlers:
    mutate: MutatingAdapter
    validate: ValidatingAdapter
    metrics: PrometheusMetrics


def build_handlers(cfg: ControllerConfig, store: ObjectStore, metrics: PrometheusMetrics) -> Handlers:
    """Wire the handler chains. Configuration errors surface here, before serving."""
    inspector = Inspector(InspectorConfig.from_controller_config(cfg))
    profile = BaselineProfile.from_controller_config(cfg)

    mutate = MutatingAdapter(
        resource=RESOURCE_APP,
        metrics=metrics,
        chain=[
            DefaultsMutator(store=store),
            ClusterAppVersionMutator(store=store),
            ComplianceMutator(store=store, provider=cfg.provider, profile=profile),
        ],
    )
    validate = ValidatingAdapter(
        resource=RESOURCE_APP,
        metrics=metrics,
        chain=[
            SecurityValidator(inspector=inspector),
            AppValidator(store=store),
            InClusterAppValidator(store=store),
        ],
    )
    return Handlers(mutate=mutate, validate=validate, metrics=metrics)


async def _dispatch(adapter: AdmissionAdapter, request: Request) -> Response:
    body = await request.body()
    ctx = RequestContext(timeout_seconds=parse_timeout(request.query_params.get("timeout")))
    try:
        result = await run_in_threadpool(adapter.handle, body, request.headers.get("content-type"), ctx)
    finally:
        # Nothing started for this request may outlive it.
        ctx.cancel("request finished")
    return Response(content=result.body, status_code=result.status_code, media_type="application/json")


def create_app(
    cfg: Optional[ControllerConfig] = None,
    *,
    store: Optional[ObjectStore] = None,
    metrics: Optional[PrometheusMetrics] = None,
) -> FastAPI:
    cfg = cfg or load_config()
    handlers = build_handlers(cfg, store or get_object_store(), metrics or PrometheusMetrics())

    app = FastAPI(title="App admission controller")
    app.state.handlers = handlers

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    @app.get("/healthz")
    def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.get("/metrics")
    def prometheus_metrics() -> Response:
        return Response(content=handlers.metrics.exposition(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/mutate/app")
    async def mutate_app(request: Request) -> Response:
        return await _dispatch(handlers.mutate, request)

    @app.post("/validate/app")
    async def validate_app(request: Request) -> Response:
        return await _dispatch(handlers.validate, request)

    return app


def run(cfg: Optional[ControllerConfig] = None) -> None:
    import uvicorn

    cfg = cfg or load_config()

    # Configure logging for the application
    log_level = (cfg.log_level or "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    metrics = PrometheusMetrics()
    app = create_app(cfg, metrics=metrics)
    if cfg.metrics_port and cfg.metrics_port != cfg.port:
        start_http_server(cfg.metrics_port, addr=cfg.address, registry=metrics.registry)
        logger.info("Serving metrics on %s:%d", cfg.address, cfg.metrics_port)

    logger.info(
        "Starting admission webhook on %s:%d (provider=%s, tls=%s, log_level=%s)",
        cfg.address,
        cfg.port,
        cfg.provider or "unset",
        bool(cfg.tls_cert_file),
        log_level,
    )
    uvicorn.run(
        app,
        host=cfg.address,
        port=cfg.port,
        log_level=uvicorn_log_level,
        ssl_certfile=cfg.tls_cert_file,
        ssl_keyfile=cfg.tls_key_file,
    )
