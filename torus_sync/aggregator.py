"""
Fold raw events into per-protocol-day records.

Each event increments its definition's category count and adds the amounts
the definition derives from its arguments. Arithmetic is on Python ints in
the token's smallest unit; events before the epoch land on day 1.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from .adapters import EVENT_REGISTRY
from .adapters.base import EventDefinition
from .errors import TimestampResolutionFailure
from .models import DayRecord, RawEvent, utc_now_iso
from .protocol_day import PROTOCOL_EPOCH, protocol_day


def aggregate(
    events: Iterable[RawEvent],
    timestamps: Mapping[int, int],
    definitions: Optional[Mapping[str, EventDefinition]] = None,
    epoch_start: int = PROTOCOL_EPOCH,
    now: Optional[str] = None,
) -> Dict[int, DayRecord]:
    definitions = EVENT_REGISTRY if definitions is None else definitions
    stamp = now or utc_now_iso()
    days: Dict[int, DayRecord] = {}

    for ev in events:
        definition = definitions.get(ev.event_name)
        if definition is None:
            raise KeyError(f"No event definition registered for {ev.event_name!r}")
        ts = timestamps.get(ev.block_number)
        if ts is None:
            raise TimestampResolutionFailure(ev.block_number, "missing from resolved timestamps")

        day = protocol_day(ts, epoch_start)
        record = days.get(day)
        if record is None:
            record = days[day] = DayRecord(day=day, last_updated=stamp)
        record.add_event(definition.category, definition.amounts(ev))

    return dict(sorted(days.items()))


def summarize(records: Mapping[int, DayRecord]) -> Dict[str, int]:
    """Total event counts per category across records."""
    totals: Dict[str, int] = {}
    for record in records.values():
        for category, count in record.event_counts.items():
            totals[category] = totals.get(category, 0) + count
    return totals
