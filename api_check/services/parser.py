"""
PayloadParser Class - Handles parsing and normalization

This module turns loosely typed JSON payloads (API bodies, config files)
into the structured models of ``models.data_models``. It is also the decoding
side of the management API wire format: the JSON that ``to_dict`` emits for
metrics, summaries and test runs parses back into the same models, for
clients that consume /api/metrics and friends.
"""

import json
from dataclasses import replace
from typing import Any, Dict, Optional

from api_check.models.data_models import (
    AppConfig, MetricRecord, MetricsSummary, ProxyConfig, ServerConfig,
    TestConfig, TestResult, TestRunSummary,
)
from api_check.utils.helpers import header_pairs, parse_ts, safe_bool, safe_float, safe_int


def _require_dict(raw: Any, what: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError(f"{what} must be a JSON object")
    return raw


def _non_negative_int(raw: Dict[str, Any], key: str, default: int) -> int:
    if raw.get(key) is None:
        return default
    value = safe_int(raw[key])
    if value is None or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {raw[key]!r}")
    return value


def _optional_str(raw: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    if key not in raw:
        return default
    value = raw[key]
    return str(value) if value is not None else None


class PayloadParser:
    """
    Parses raw payloads into structured model objects.
    Responsibilities:
    - Parse JSON text
    - Normalize config sections, applying defaults for missing fields
    - Apply partial updates onto existing config snapshots
    - Decode metrics, summaries and run results as served by the API
    """

    @staticmethod
    def parse_json(text: str) -> Optional[Any]:
        """Parse JSON text, return None if invalid"""
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            return None

    # ── configuration ────────────────────────────────────────────────────────

    @staticmethod
    def parse_server_config(raw: Any, base: Optional[ServerConfig] = None) -> ServerConfig:
        raw = _require_dict(raw, "server")
        base = base or ServerConfig()
        port = safe_int(raw.get("port", base.port))
        if port is None or not 0 <= port <= 65535:
            raise ValueError(f"port must be between 0 and 65535, got {raw.get('port')!r}")
        return ServerConfig(host=str(raw.get("host", base.host)), port=port)

    @staticmethod
    def parse_proxy_config(raw: Any, base: Optional[ProxyConfig] = None) -> ProxyConfig:
        """
        Missing keys keep the base value; an explicit null target is ignored,
        matching the partial-update semantics of the management API.
        """
        raw = _require_dict(raw, "proxy")
        base = base or ProxyConfig()
        enabled = base.enabled
        if raw.get("enabled") is not None:
            enabled = safe_bool(raw["enabled"])
            if enabled is None:
                raise ValueError(f"enabled must be a boolean, got {raw['enabled']!r}")
        target = base.target
        if raw.get("target") is not None:
            target = str(raw["target"]) or None
        return ProxyConfig(enabled=enabled, target=target)

    @staticmethod
    def parse_test_config(raw: Any, base: Optional[TestConfig] = None) -> TestConfig:
        """Normalize a test configuration; fields absent from raw keep base values"""
        if raw is None:
            return base or TestConfig()
        raw = _require_dict(raw, "test config")
        base = base or TestConfig()

        headers = base.headers
        if raw.get("headers") is not None:
            headers = tuple(header_pairs(raw["headers"]))

        return replace(
            base,
            num_calls=_non_negative_int(raw, "num_calls", base.num_calls),
            frequency_ms=_non_negative_int(raw, "frequency_ms", base.frequency_ms),
            method=str(raw["method"]) if raw.get("method") is not None else base.method,
            target_url=_optional_str(raw, "target_url", base.target_url),
            body=_optional_str(raw, "body", base.body),
            headers=headers,
        )

    @classmethod
    def parse_app_config(cls, raw: Any, base: Optional[AppConfig] = None) -> AppConfig:
        raw = _require_dict(raw, "config")
        base = base or AppConfig()
        return AppConfig(
            server=cls.parse_server_config(raw.get("server") or {}, base.server),
            proxy=cls.parse_proxy_config(raw.get("proxy") or {}, base.proxy),
            test=cls.parse_test_config(raw.get("test") or {}, base.test),
        )

    # ── metrics and results ──────────────────────────────────────────────────

    @staticmethod
    def parse_metric(raw: Any) -> MetricRecord:
        raw = _require_dict(raw, "metric")
        ts = parse_ts(raw.get("timestamp"))
        if ts is None:
            raise ValueError(f"metric timestamp is missing or invalid: {raw.get('timestamp')!r}")
        status = safe_int(raw.get("status_code"))
        if status is not None and not 0 <= status <= 65535:
            raise ValueError(f"status_code out of range: {status}")
        return MetricRecord(
            id=str(raw.get("id") or ""),
            method=str(raw.get("method") or ""),
            path=str(raw.get("path") or ""),
            status_code=status,
            latency_ms=max(safe_float(raw.get("latency_ms")) or 0.0, 0.0),
            timestamp=ts,
            proxied=bool(safe_bool(raw.get("proxied"))),
        )

    @staticmethod
    def parse_summary(raw: Any) -> MetricsSummary:
        raw = _require_dict(raw, "summary")
        distribution = {
            int(k): int(v) for k, v in (raw.get("status_distribution") or {}).items()
        }
        return MetricsSummary(
            total_requests=safe_int(raw.get("total_requests")) or 0,
            successful_requests=safe_int(raw.get("successful_requests")) or 0,
            failed_requests=safe_int(raw.get("failed_requests")) or 0,
            avg_latency_ms=safe_float(raw.get("avg_latency_ms")) or 0.0,
            min_latency_ms=safe_float(raw.get("min_latency_ms")) or 0.0,
            max_latency_ms=safe_float(raw.get("max_latency_ms")) or 0.0,
            proxied_requests=safe_int(raw.get("proxied_requests")) or 0,
            status_distribution=distribution,
            requests_per_second=safe_float(raw.get("requests_per_second")) or 0.0,
        )

    @staticmethod
    def parse_test_result(raw: Any) -> TestResult:
        raw = _require_dict(raw, "test result")
        return TestResult(
            index=safe_int(raw.get("index")) or 0,
            success=bool(safe_bool(raw.get("success"))),
            status_code=safe_int(raw.get("status_code")),
            latency_ms=safe_float(raw.get("latency_ms")) or 0.0,
            error=_optional_str(raw, "error"),
        )

    @classmethod
    def parse_run_summary(cls, raw: Any) -> TestRunSummary:
        raw = _require_dict(raw, "run summary")
        return TestRunSummary(
            total_requests=safe_int(raw.get("total_requests")) or 0,
            successful=safe_int(raw.get("successful")) or 0,
            failed=safe_int(raw.get("failed")) or 0,
            avg_latency_ms=safe_float(raw.get("avg_latency_ms")) or 0.0,
            min_latency_ms=safe_float(raw.get("min_latency_ms")) or 0.0,
            max_latency_ms=safe_float(raw.get("max_latency_ms")) or 0.0,
            total_duration_ms=safe_float(raw.get("total_duration_ms")) or 0.0,
            results=[cls.parse_test_result(r) for r in raw.get("results") or []],
        )
