"""
Helper Functions

This module contains utility functions used throughout the application.
"""

import time
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from dateutil import parser as dtparser


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats"""
    if not x:
        return None
    if isinstance(x, datetime):
        dt = x
    else:
        try:
            dt = dtparser.isoparse(str(x))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def safe_int(x: Any) -> Optional[int]:
    """Safely convert to int"""
    try:
        return int(x) if x is not None else None
    except (TypeError, ValueError):
        return None


def safe_float(x: Any) -> Optional[float]:
    """Safely convert to float"""
    try:
        return float(x) if x is not None else None
    except (TypeError, ValueError):
        return None


def safe_bool(x: Any) -> Optional[bool]:
    """Interpret common truthy/falsy spellings, None if unrecognized"""
    if isinstance(x, bool):
        return x
    if x is None:
        return None
    s = str(x).strip().lower()
    if s in ("true", "1", "yes", "on"):
        return True
    if s in ("false", "0", "no", "off"):
        return False
    return None


def elapsed_ms(start: float) -> float:
    """Milliseconds since a time.perf_counter() reading"""
    return (time.perf_counter() - start) * 1000.0


def header_pairs(raw: Any) -> List[Tuple[str, str]]:
    """
    Normalize headers into an ordered list of (name, value) pairs.
    Accepts a list of pairs (duplicates kept) or a mapping.
    """
    if raw is None:
        return []
    items: Iterable[Any] = raw.items() if isinstance(raw, dict) else raw
    pairs: List[Tuple[str, str]] = []
    for item in items:
        if isinstance(item, (list, tuple)) and len(item) == 2:
            pairs.append((str(item[0]), str(item[1])))
        else:
            raise ValueError(f"Invalid header entry: {item!r}")
    return pairs
