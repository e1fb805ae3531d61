"""
Merge newly aggregated day records into a cache document.

The sync owns exactly these parts of the document:
    dailyData            day-sorted list of day records
    metadata.lastBlock   sync cursor (last block fully processed)
    metadata.lastSyncRun / metadata.gaps
    lastUpdated
Everything else, including unknown keys inside a day record, is passed
through as-is.

merge() adds; it never replaces. Merging the same records twice counts them
twice, so callers only ever merge the aggregate of [cursor + 1, head].
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from .errors import CacheFormatError
from .models import DayRecord, RangeGap, utc_now_iso

DAILY_KEY = "dailyData"
METADATA_KEY = "metadata"
CURSOR_KEY = "lastBlock"


def empty_document() -> Dict[str, Any]:
    return {"lastUpdated": None, METADATA_KEY: {CURSOR_KEY: None}, DAILY_KEY: []}


def get_cursor(document: Mapping[str, Any]) -> Optional[int]:
    meta = document.get(METADATA_KEY) or {}
    value = meta.get(CURSOR_KEY)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise CacheFormatError(f"metadata.{CURSOR_KEY} is not a block number: {value!r}") from e


def _day_entries(document: Mapping[str, Any]) -> Dict[int, Dict[str, Any]]:
    entries = document.get(DAILY_KEY) or []
    if not isinstance(entries, list):
        raise CacheFormatError(f"'{DAILY_KEY}' must be a list")
    by_day: Dict[int, Dict[str, Any]] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise CacheFormatError(f"day record is not an object: {entry!r}")
        record = DayRecord.from_dict(entry)
        if record.day in by_day:
            raise CacheFormatError(f"day {record.day} appears twice in '{DAILY_KEY}'")
        by_day[record.day] = entry
    return by_day


def records_from_document(document: Mapping[str, Any]) -> Dict[int, DayRecord]:
    return {day: DayRecord.from_dict(entry) for day, entry in sorted(_day_entries(document).items())}


def merge(
    document: Mapping[str, Any],
    new_records: Mapping[int, DayRecord],
    now: Optional[str] = None,
    epoch_start: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Return a new document with ``new_records`` added to ``document``.

    Existing days get their counts and amounts summed key by key and their
    lastUpdated refreshed; new days are inserted in day order. The input
    document is not modified.
    """
    stamp = now or utc_now_iso()
    merged = dict(document)
    entries = _day_entries(document)

    for day, record in sorted(new_records.items()):
        if record.day != day:
            raise ValueError(f"record for day {record.day} filed under key {day}")
        old_entry = entries.get(day)
        if old_entry is None:
            fresh = DayRecord(day, dict(record.event_counts), dict(record.amounts), stamp)
            entries[day] = fresh.to_dict(epoch_start)
        else:
            combined = DayRecord.from_dict(old_entry).combine(record)
            combined.last_updated = stamp
            new_entry = dict(old_entry)
            new_entry.update(combined.to_dict(epoch_start))
            entries[day] = new_entry

    merged[DAILY_KEY] = [entries[d] for d in sorted(entries)]
    if new_records:
        merged["lastUpdated"] = stamp
    return merged


def advance_cursor(document: Mapping[str, Any], last_block: int, now: Optional[str] = None) -> Dict[str, Any]:
    """Set metadata.lastBlock. The cursor never moves backwards."""
    current = get_cursor(document)
    if current is not None and last_block < current:
        raise ValueError(f"cursor would move backwards: {current} -> {last_block}")
    stamp = now or utc_now_iso()
    out = dict(document)
    meta = dict(document.get(METADATA_KEY) or {})
    meta[CURSOR_KEY] = int(last_block)
    meta["lastSyncRun"] = stamp
    out[METADATA_KEY] = meta
    out["lastUpdated"] = stamp
    return out


def record_gaps(document: Mapping[str, Any], gaps: Iterable[RangeGap]) -> Dict[str, Any]:
    """Append uncovered block ranges to metadata.gaps."""
    gaps = list(gaps)
    if not gaps:
        return dict(document)
    out = dict(document)
    meta = dict(document.get(METADATA_KEY) or {})
    meta["gaps"] = list(meta.get("gaps") or []) + [g.to_dict() for g in gaps]
    out[METADATA_KEY] = meta
    return out


def reset_owned(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop the day records and cursor for a rebuild; keep everything else."""
    out = dict(document)
    out[DAILY_KEY] = []
    meta = dict(document.get(METADATA_KEY) or {})
    meta[CURSOR_KEY] = None
    meta.pop("gaps", None)
    out[METADATA_KEY] = meta
    return out
