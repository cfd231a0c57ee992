"""
MetricsStore Class - Handles in-memory metric storage

This module keeps the bounded collection of request metrics shared by the
proxy, the echo routes and the test runner.
"""

import logging
import threading
from datetime import datetime
from typing import List, Tuple

from api_check.config import EVICTION_FRACTION_DIVISOR, METRICS_MAX_ENTRIES
from api_check.models.data_models import MetricRecord, MetricsSummary
from api_check.services.aggregator import (
    compute_histogram, compute_summary, compute_time_series, filter_recent,
)

logger = logging.getLogger(__name__)


class MetricsStore:
    """
    Thread-safe, bounded storage of MetricRecord objects.
    Responsibilities:
    - Append records, evicting the oldest batch when full
    - Hand out snapshot copies for reading
    - Produce summaries and chart data from a single snapshot
    """

    def __init__(self, max_entries: int = METRICS_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        # at least one, otherwise a store smaller than the divisor never evicts
        self.evict_batch = max(max_entries // EVICTION_FRACTION_DIVISOR, 1)
        self._records: List[MetricRecord] = []
        self._lock = threading.Lock()

    def record(self, metric: MetricRecord) -> None:
        """Append a record, dropping the oldest batch first when at capacity"""
        with self._lock:
            if len(self._records) >= self.max_entries:
                del self._records[:self.evict_batch]
                logger.debug(f"Evicted {self.evict_batch} oldest metrics (capacity {self.max_entries})")
            self._records.append(metric)

    def _snapshot(self) -> List[MetricRecord]:
        with self._lock:
            return list(self._records)

    def get_all(self) -> List[MetricRecord]:
        """Copy of all stored records in insertion order"""
        return self._snapshot()

    def get_recent(self, seconds: int) -> List[MetricRecord]:
        """Records newer than now - seconds"""
        return filter_recent(self._snapshot(), seconds)

    def get_summary(self) -> MetricsSummary:
        return compute_summary(self._snapshot())

    def get_latency_histogram(self, buckets: int) -> List[Tuple[float, int]]:
        return compute_histogram(self._snapshot(), buckets)

    def get_time_series(self, points: int) -> List[Tuple[datetime, float]]:
        return compute_time_series(self._snapshot(), points)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        logger.info("Metrics cleared")

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.count()
