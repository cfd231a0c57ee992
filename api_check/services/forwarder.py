"""
Forwarder Class - Relays requests to the configured upstream

This module implements proxy mode: it forwards an inbound request to the
proxy target, relays the upstream response verbatim and records the outcome.
"""

import logging
import time
from typing import List, Optional

import httpx

from api_check.config import OUTBOUND_TIMEOUT_SECONDS
from api_check.models.data_models import (
    ForwardedResponse, Header, HttpMethod, InboundRequest, MetricRecord,
)
from api_check.services.config_store import ConfigStore
from api_check.services.metrics_store import MetricsStore
from api_check.utils.helpers import elapsed_ms

logger = logging.getLogger(__name__)

# Connection framing headers; the body is always re-framed on each hop
HOP_BY_HOP_HEADERS = {"connection", "keep-alive", "transfer-encoding"}


def build_target_url(target: str, path_and_query: str) -> str:
    if not path_and_query.startswith("/"):
        path_and_query = "/" + path_and_query
    return target.rstrip("/") + path_and_query


def _text_response(status_code: int, text: str) -> ForwardedResponse:
    return ForwardedResponse(
        status_code=status_code,
        headers=[("content-type", "text/plain; charset=utf-8")],
        body=text.encode("utf-8"),
    )


class Forwarder:
    """
    Forwards requests in proxy mode.
    Responsibilities:
    - Decide between disabled / misconfigured / forwarding branches
    - Copy request headers (minus Host and framing) and body to the upstream
    - Copy upstream status, headers and raw body back
    - Record exactly one metric per forwarded request
    """

    def __init__(self, config: ConfigStore, metrics: MetricsStore,
                 client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.metrics = metrics
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=OUTBOUND_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _record(self, request: InboundRequest, status: int, latency_ms: float, proxied: bool) -> None:
        path = request.path.split("?", 1)[0]
        self.metrics.record(MetricRecord.create(request.method, path, status, latency_ms, proxied))

    async def forward(self, request: InboundRequest) -> ForwardedResponse:
        start = time.perf_counter()
        proxy = self.config.get().proxy

        if not proxy.enabled:
            self._record(request, 200, elapsed_ms(start), proxied=False)
            return _text_response(200, "Proxy mode disabled")

        if not proxy.target:
            logger.warning(f"Proxy enabled without a target, rejecting {request.method} {request.path}")
            self._record(request, 502, elapsed_ms(start), proxied=True)
            return _text_response(502, "No proxy target configured")

        url = build_target_url(proxy.target, request.path)
        try:
            response = await self._send(request, url)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as e:
            logger.error(f"Proxy error for {request.method} {url}: {e!r}")
            self._record(request, 502, elapsed_ms(start), proxied=True)
            return _text_response(502, f"Proxy error: {e}")

        latency = elapsed_ms(start)
        self._record(request, response.status_code, latency, proxied=True)
        logger.info(f"Proxied {request.method} {url} -> {response.status_code} in {latency:.2f} ms")
        return response

    async def _send(self, request: InboundRequest, url: str) -> ForwardedResponse:
        # header text carries the inbound bytes as latin-1; send them back unchanged
        headers = [
            (k.encode("latin-1"), v.encode("latin-1")) for k, v in request.headers
            if k.lower() != "host" and k.lower() not in HOP_BY_HOP_HEADERS
        ]
        outbound = self.client.build_request(
            HttpMethod.parse(request.method).value,
            url,
            headers=headers,
            content=request.body or None,
        )
        upstream = await self.client.send(outbound, stream=True)
        try:
            # raw bytes keep Content-Encoding and body consistent
            body = b"".join([chunk async for chunk in upstream.aiter_raw()])
        finally:
            await upstream.aclose()

        relayed: List[Header] = [
            (k.decode("latin-1"), v.decode("latin-1"))
            for k, v in upstream.headers.raw
            if k.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return ForwardedResponse(status_code=upstream.status_code, headers=relayed, body=body)
