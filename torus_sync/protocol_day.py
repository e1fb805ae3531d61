"""
Protocol-day utilities.

Every aggregation path buckets events with ``protocol_day`` from this module;
nothing else defines its own epoch or day length.

Conventions:
- Day 1 starts at the protocol epoch (contract genesis instant, UTC).
- Each day is exactly 86400 seconds; the boundary is the epoch's time of day.
- Anything before the epoch is clamped to day 1.

This module provides:
    * parse_epoch(value): ISO-8601 string / datetime / int -> unix seconds
    * protocol_day(ts): unix ts -> protocol day (>= 1)
    * day_start(day), day_window(day): protocol day -> UTC unix bounds
    * day_to_date(day): protocol day -> YYYY-MM-DD of its first instant
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

SECONDS_PER_DAY = 86400

DEFAULT_EPOCH_ISO = "2025-07-10T18:00:00Z"


def parse_epoch(value: Union[str, int, datetime]) -> int:
    """
    Normalize an epoch setting to unix seconds.
    Naive datetimes and ISO strings without an offset are taken as UTC.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid epoch: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        value = datetime.fromisoformat(s)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    raise ValueError(f"invalid epoch: {value!r}")


PROTOCOL_EPOCH = parse_epoch(DEFAULT_EPOCH_ISO)


def protocol_day(ts: int, epoch_start: int = PROTOCOL_EPOCH) -> int:
    """floor((ts - epoch_start) / 86400) + 1, never less than 1."""
    day = (int(ts) - int(epoch_start)) // SECONDS_PER_DAY + 1
    return max(1, day)


def day_start(day: int, epoch_start: int = PROTOCOL_EPOCH) -> int:
    if day < 1:
        raise ValueError(f"protocol days start at 1, got {day}")
    return int(epoch_start) + (day - 1) * SECONDS_PER_DAY


def day_window(day: int, epoch_start: int = PROTOCOL_EPOCH) -> tuple[int, int]:
    """
    Return (ts_start, ts_end) for a protocol day: ts_start is inclusive,
    ts_end is the first second of the next day.
    """
    start = day_start(day, epoch_start)
    return start, start + SECONDS_PER_DAY


def day_to_date(day: int, epoch_start: int = PROTOCOL_EPOCH) -> str:
    return datetime.fromtimestamp(day_start(day, epoch_start), tz=timezone.utc).date().isoformat()
