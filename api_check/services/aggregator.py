"""
Aggregator - Computes metrics and statistics

This module aggregates metric records into summaries and chart data.
All functions work on a snapshot list and never touch shared state.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from api_check.config import RPS_WINDOW_SECONDS
from api_check.models.data_models import MetricRecord, MetricsSummary
from api_check.utils.helpers import utc_now


def is_success(status_code: Optional[int]) -> bool:
    return status_code is not None and 200 <= status_code < 300


def is_failure(status_code: Optional[int]) -> bool:
    return status_code is not None and status_code >= 400


def filter_recent(
    records: Sequence[MetricRecord], seconds: int, now: Optional[datetime] = None
) -> List[MetricRecord]:
    """
    Records strictly newer than now - seconds. Windows reaching past the
    datetime range keep everything (positive) or nothing (negative).
    """
    try:
        cutoff = (now or utc_now()) - timedelta(seconds=seconds)
    except OverflowError:
        return list(records) if seconds > 0 else []
    return [r for r in records if r.timestamp > cutoff]


def compute_summary(
    records: Sequence[MetricRecord], now: Optional[datetime] = None
) -> MetricsSummary:
    """Compute aggregated metrics from a record snapshot"""
    if not records:
        return MetricsSummary()

    total = len(records)
    latencies = [r.latency_ms for r in records]

    successful = 0
    failed = 0
    by_status: Dict[int, int] = {}
    for r in records:
        if r.status_code is None:
            continue
        by_status[r.status_code] = by_status.get(r.status_code, 0) + 1
        if is_success(r.status_code):
            successful += 1
        elif is_failure(r.status_code):
            failed += 1

    recent = filter_recent(records, RPS_WINDOW_SECONDS, now)

    return MetricsSummary(
        total_requests=total,
        successful_requests=successful,
        failed_requests=failed,
        avg_latency_ms=sum(latencies) / total,
        min_latency_ms=min(latencies),
        max_latency_ms=max(latencies),
        proxied_requests=sum(1 for r in records if r.proxied),
        status_distribution=by_status,
        requests_per_second=len(recent) / RPS_WINDOW_SECONDS,
    )


def compute_histogram(records: Sequence[MetricRecord], buckets: int) -> List[Tuple[float, int]]:
    """
    Partition [min, max] latency into equal-width buckets.
    Returns (bucket_start, count) pairs. Degenerate inputs collapse into a
    single bucket holding every record.
    """
    if not records:
        return [(0.0, 0)]

    latencies = [r.latency_ms for r in records]
    lo = min(latencies)
    hi = max(latencies)

    if hi == lo or buckets <= 0:
        return [(lo, len(latencies))]

    width = (hi - lo) / buckets
    if not math.isfinite(width) or width == 0.0:
        return [(lo, len(latencies))]

    counts = [0] * buckets
    for latency in latencies:
        # the maximum lands past the last boundary and is clamped back
        idx = min(int((latency - lo) / width), buckets - 1)
        counts[idx] += 1

    return [(lo + i * width, c) for i, c in enumerate(counts)]


def compute_time_series(records: Sequence[MetricRecord], points: int) -> List[Tuple[datetime, float]]:
    """Most recent `points` (timestamp, latency) pairs, oldest first"""
    if points <= 0 or not records:
        return []
    return [(r.timestamp, r.latency_ms) for r in records[-points:]]
