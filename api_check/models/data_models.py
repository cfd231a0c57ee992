"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the application.
Each model serializes itself with ``to_dict``; decoding lives in
``services.parser.PayloadParser``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from api_check.config import (
    DEFAULT_HOST, DEFAULT_PORT, TEST_DEFAULT_FREQUENCY_MS, TEST_DEFAULT_METHOD,
    TEST_DEFAULT_NUM_CALLS,
)
from api_check.utils.helpers import utc_now

Header = Tuple[str, str]


class HttpMethod(str, Enum):
    """HTTP methods the server and test runner know how to issue"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"

    @classmethod
    def parse(cls, value: Any) -> "HttpMethod":
        """Case-insensitive lookup, GET for anything unrecognized"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.GET


# ──────────────────────────────────────────────────────────────────────────────
# Metrics
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MetricRecord:
    """One observed HTTP exchange"""
    id: str
    method: str
    path: str
    status_code: Optional[int]
    latency_ms: float
    timestamp: datetime
    proxied: bool = False

    @classmethod
    def create(
        cls,
        method: str,
        path: str,
        status_code: Optional[int] = None,
        latency_ms: float = 0.0,
        proxied: bool = False,
    ) -> "MetricRecord":
        return cls(
            id=str(uuid.uuid4()),
            method=method,
            path=path,
            status_code=status_code,
            latency_ms=max(float(latency_ms), 0.0),
            timestamp=utc_now(),
            proxied=proxied,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "path": self.path,
            "status_code": self.status_code,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp.isoformat(),
            "proxied": self.proxied,
        }


@dataclass
class MetricsSummary:
    """Aggregated metrics over the whole store"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    proxied_requests: int = 0
    status_distribution: Dict[int, int] = field(default_factory=dict)
    requests_per_second: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "avg_latency_ms": self.avg_latency_ms,
            "min_latency_ms": self.min_latency_ms,
            "max_latency_ms": self.max_latency_ms,
            "proxied_requests": self.proxied_requests,
            # JSON object keys must be strings
            "status_distribution": {str(k): v for k, v in sorted(self.status_distribution.items())},
            "requests_per_second": self.requests_per_second,
        }


# ──────────────────────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port}


@dataclass(frozen=True)
class ProxyConfig:
    enabled: bool = False
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "target": self.target}


@dataclass(frozen=True)
class TestConfig:
    """Parameters of one test run"""
    __test__ = False

    num_calls: int = TEST_DEFAULT_NUM_CALLS
    frequency_ms: int = TEST_DEFAULT_FREQUENCY_MS
    method: str = TEST_DEFAULT_METHOD
    target_url: Optional[str] = None
    body: Optional[str] = None
    headers: Tuple[Header, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_calls": self.num_calls,
            "frequency_ms": self.frequency_ms,
            "method": self.method,
            "target_url": self.target_url,
            "body": self.body,
            "headers": [[name, value] for name, value in self.headers],
        }


@dataclass(frozen=True)
class AppConfig:
    """Immutable snapshot of the whole runtime configuration"""
    server: ServerConfig = field(default_factory=ServerConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    test: TestConfig = field(default_factory=TestConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "server": self.server.to_dict(),
            "proxy": self.proxy.to_dict(),
            "test": self.test.to_dict(),
        }


# ──────────────────────────────────────────────────────────────────────────────
# Test runs
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class TestResult:
    """Outcome of a single call within a run"""
    __test__ = False

    index: int
    success: bool
    status_code: Optional[int]
    latency_ms: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "success": self.success,
            "status_code": self.status_code,
            "latency_ms": self.latency_ms,
            "error": self.error,
        }


@dataclass
class TestRunSummary:
    __test__ = False

    total_requests: int = 0
    successful: int = 0
    failed: int = 0
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    total_duration_ms: float = 0.0
    results: List[TestResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful": self.successful,
            "failed": self.failed,
            "avg_latency_ms": self.avg_latency_ms,
            "min_latency_ms": self.min_latency_ms,
            "max_latency_ms": self.max_latency_ms,
            "total_duration_ms": self.total_duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


# ──────────────────────────────────────────────────────────────────────────────
# Forwarding
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class InboundRequest:
    """Framework-independent view of a request to forward"""
    method: str
    path: str  # path plus query string
    headers: List[Header] = field(default_factory=list)
    body: bytes = b""


@dataclass
class ForwardedResponse:
    status_code: int
    headers: List[Header] = field(default_factory=list)
    body: bytes = b""
