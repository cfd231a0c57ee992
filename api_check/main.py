from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from api_check.config import (
    API_PREFIX, DEFAULT_HISTOGRAM_BUCKETS, DEFAULT_RECENT_SECONDS,
    DEFAULT_TIME_SERIES_POINTS, METRICS_MAX_ENTRIES, VERSION,
)
from api_check.models.data_models import ForwardedResponse, InboundRequest, MetricRecord
from api_check.services.config_store import ConfigStore
from api_check.services.forwarder import Forwarder
from api_check.services.metrics_store import MetricsStore
from api_check.services.parser import PayloadParser
from api_check.services.test_runner import TestRunInProgressError, TestRunner
from api_check.utils.helpers import elapsed_ms

logger = logging.getLogger(__name__)

DEV_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────


def request_path(request: Request) -> str:
    """Path plus query string, as received"""
    query = request.url.query
    return request.url.path + (f"?{query}" if query else "")


async def to_inbound(request: Request) -> InboundRequest:
    return InboundRequest(
        method=request.method,
        path=request_path(request),
        headers=[(k.decode("latin-1"), v.decode("latin-1")) for k, v in request.headers.raw],
        body=await request.body(),
    )


def to_response(forwarded: ForwardedResponse) -> Response:
    response = Response(content=forwarded.body, status_code=forwarded.status_code)
    # replace the defaults Starlette computed; duplicates (e.g. set-cookie) survive
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in forwarded.headers]
    if not any(k == b"content-length" for k, _ in raw):
        raw.append((b"content-length", str(len(forwarded.body)).encode("latin-1")))
    response.raw_headers = raw
    return response


def parse_or_400(parse, raw: Any, *args):
    try:
        return parse(raw, *args)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────


def create_app(
    config: Optional[ConfigStore] = None,
    metrics: Optional[MetricsStore] = None,
    tester: Optional[TestRunner] = None,
    forwarder: Optional[Forwarder] = None,
) -> FastAPI:
    """
    Build the dev server: management API under /api, echo or proxy for
    everything else. Collaborators default to fresh instances.
    """
    # MetricsStore defines __len__, an empty one is falsy
    if config is None:
        config = ConfigStore()
    if metrics is None:
        metrics = MetricsStore(METRICS_MAX_ENTRIES)
    if tester is None:
        tester = TestRunner(config, metrics)
    if forwarder is None:
        forwarder = Forwarder(config, metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        tester.stop()
        task = app.state.test_task
        if task is not None and not task.done():
            task.cancel()
        await forwarder.aclose()
        await tester.aclose()

    app = FastAPI(title="API Check (dev server, proxy and API tester)", version=VERSION, lifespan=lifespan)
    app.state.config = config
    app.state.metrics = metrics
    app.state.tester = tester
    app.state.forwarder = forwarder
    app.state.test_task = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # dev tool
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ──────────────────────────────────────────────────────────────────────────
    # Health
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/health")
    def health() -> Dict[str, Any]:
        return {"status": "healthy", "version": VERSION}

    # ──────────────────────────────────────────────────────────────────────────
    # Configuration
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/config")
    def get_config() -> Dict[str, Any]:
        return config.get().to_dict()

    @app.put(f"{API_PREFIX}/config")
    def update_config(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        config.update(parse_or_400(PayloadParser.parse_app_config, payload))
        return {"message": "Configuration updated"}

    @app.get(f"{API_PREFIX}/config/proxy")
    def get_proxy_config() -> Dict[str, Any]:
        return config.get().proxy.to_dict()

    @app.put(f"{API_PREFIX}/config/proxy")
    def update_proxy_config(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        current = config.get().proxy
        config.update_proxy(parse_or_400(PayloadParser.parse_proxy_config, payload, current))
        return {"message": "Proxy configuration updated"}

    @app.get(f"{API_PREFIX}/config/test")
    def get_test_config() -> Dict[str, Any]:
        return config.get().test.to_dict()

    @app.put(f"{API_PREFIX}/config/test")
    def update_test_config(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        current = config.get().test
        config.update_test(parse_or_400(PayloadParser.parse_test_config, payload, current))
        return {"message": "Test configuration updated"}

    # ──────────────────────────────────────────────────────────────────────────
    # Metrics + Charts
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/metrics")
    def get_metrics() -> List[Dict[str, Any]]:
        return [m.to_dict() for m in metrics.get_all()]

    @app.get(f"{API_PREFIX}/metrics/summary")
    def get_metrics_summary() -> Dict[str, Any]:
        return metrics.get_summary().to_dict()

    @app.get(f"{API_PREFIX}/metrics/recent")
    def get_recent_metrics(seconds: int = Query(DEFAULT_RECENT_SECONDS)) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in metrics.get_recent(seconds)]

    @app.get(f"{API_PREFIX}/metrics/histogram")
    def get_histogram(buckets: int = Query(DEFAULT_HISTOGRAM_BUCKETS, ge=0, le=1000)) -> List[Dict[str, Any]]:
        return [{"start": start, "count": count} for start, count in metrics.get_latency_histogram(buckets)]

    @app.get(f"{API_PREFIX}/metrics/timeseries")
    def get_time_series(points: int = Query(DEFAULT_TIME_SERIES_POINTS, ge=0, le=METRICS_MAX_ENTRIES)) -> List[Dict[str, Any]]:
        return [
            {"timestamp": ts.isoformat(), "latency_ms": latency}
            for ts, latency in metrics.get_time_series(points)
        ]

    @app.post(f"{API_PREFIX}/metrics/clear")
    def clear_metrics() -> Dict[str, Any]:
        metrics.clear()
        return {"message": "Metrics cleared"}

    # ──────────────────────────────────────────────────────────────────────────
    # API tests
    # ──────────────────────────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/test/run", status_code=202)
    async def run_test(payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
        test_config = parse_or_400(PayloadParser.parse_test_config, payload, config.get().test)
        try:
            task = tester.start(test_config)
        except TestRunInProgressError as e:
            return JSONResponse(status_code=409, content={"error": str(e)})

        def _report(done) -> None:
            if done.cancelled():
                return
            if done.exception() is not None:
                logger.error(f"Test run failed: {done.exception()!r}")

        task.add_done_callback(_report)
        app.state.test_task = task  # keep a strong reference while it runs
        return {"message": "Test started"}

    @app.get(f"{API_PREFIX}/test/status")
    def get_test_status() -> Dict[str, Any]:
        return {"running": tester.is_running()}

    @app.post(f"{API_PREFIX}/test/stop")
    def stop_test() -> Dict[str, Any]:
        if not tester.is_running():
            return {"message": "No test running"}
        tester.stop()
        return {"message": "Test stopped"}

    # ──────────────────────────────────────────────────────────────────────────
    # Dev server: root, echo or proxy
    # ──────────────────────────────────────────────────────────────────────────

    @app.api_route("/", methods=DEV_METHODS)
    async def dev_root(request: Request) -> Response:
        start = time.perf_counter()
        metrics.record(MetricRecord.create(request.method, "/", 200, elapsed_ms(start)))
        return PlainTextResponse(f"API Check Dev Server - Use {API_PREFIX}/* for management endpoints")

    @app.api_route("/{path:path}", methods=DEV_METHODS)
    async def proxy_or_echo(request: Request, path: str) -> Response:
        if config.get().proxy.enabled:
            forwarded = await forwarder.forward(await to_inbound(request))
            return to_response(forwarded)

        start = time.perf_counter()
        payload = {
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query,
            "headers": [[k.decode("latin-1"), v.decode("latin-1")] for k, v in request.headers.raw],
            "message": "Echo response from dev server",
        }
        metrics.record(MetricRecord.create(request.method, request.url.path, 200, elapsed_ms(start)))
        logger.debug(f"Echoed {request.method} {request.url.path}")
        return JSONResponse(payload)

    return app
