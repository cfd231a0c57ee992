from typing import Callable, List

import httpx
import pytest

from api_check.models.data_models import AppConfig, MetricRecord
from api_check.services.config_store import ConfigStore
from api_check.services.metrics_store import MetricsStore


def make_metric(status=200, latency=10.0, method="GET", path="/test", proxied=False) -> MetricRecord:
    return MetricRecord.create(method, path, status, latency, proxied)


class RecordingTransport:
    """MockTransport handler that remembers every request it served"""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def config_store() -> ConfigStore:
    return ConfigStore(AppConfig())


@pytest.fixture
def metrics() -> MetricsStore:
    return MetricsStore(max_entries=1000)
