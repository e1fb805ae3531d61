"""
Data model shared by the pipeline stages.

Token amounts are plain Python ints in the token's smallest unit. They are
written to disk as decimal strings and never pass through float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .errors import CacheFormatError
from .protocol_day import PROTOCOL_EPOCH, day_to_date


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_amount(value: Any, where: str = "amount") -> int:
    """
    Parse an on-disk amount into an int.

    Accepts ints and strings of decimal digits. Floats and scientific
    notation are rejected because they have already lost precision.
    """
    if isinstance(value, bool):
        raise CacheFormatError(f"{where}: boolean is not an amount")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip()
        digits = s[1:] if s.startswith("-") else s
        if digits.isdigit():
            return int(s)
    raise CacheFormatError(f"{where}: expected integer or decimal string, got {value!r}")


@dataclass(frozen=True)
class RawEvent:
    contract: str
    event_name: str
    args: Mapping[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int

    @property
    def sort_key(self):
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class RangeGap:
    """An inclusive block range the fetcher could not cover."""
    start: int
    end: int
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"fromBlock": self.start, "toBlock": self.end, "reason": self.reason}


@dataclass
class FetchResult:
    events: List[RawEvent] = field(default_factory=list)
    gaps: List[RangeGap] = field(default_factory=list)

    def extend(self, other: "FetchResult") -> None:
        self.events.extend(other.events)
        self.gaps.extend(other.gaps)

    @property
    def complete(self) -> bool:
        return not self.gaps


@dataclass
class DayRecord:
    day: int
    event_counts: Dict[str, int] = field(default_factory=dict)
    amounts: Dict[str, int] = field(default_factory=dict)
    last_updated: Optional[str] = None

    def add_event(self, category: str, amounts: Mapping[str, int]) -> None:
        self.event_counts[category] = self.event_counts.get(category, 0) + 1
        for key, value in amounts.items():
            self.amounts[key] = self.amounts.get(key, 0) + int(value)

    def combine(self, other: "DayRecord") -> "DayRecord":
        """Key-wise sum of two records for the same day."""
        if other.day != self.day:
            raise ValueError(f"cannot combine day {self.day} with day {other.day}")
        counts = dict(self.event_counts)
        for k, v in other.event_counts.items():
            counts[k] = counts.get(k, 0) + v
        amounts = dict(self.amounts)
        for k, v in other.amounts.items():
            amounts[k] = amounts.get(k, 0) + v
        return DayRecord(self.day, counts, amounts, other.last_updated or self.last_updated)

    def to_dict(self, epoch_start: Optional[int] = None) -> Dict[str, Any]:
        epoch = PROTOCOL_EPOCH if epoch_start is None else epoch_start
        return {
            "day": self.day,
            "date": day_to_date(self.day, epoch),
            "eventCounts": dict(sorted(self.event_counts.items())),
            "amounts": {k: str(v) for k, v in sorted(self.amounts.items())},
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "DayRecord":
        try:
            day = int(d["day"])
        except (KeyError, TypeError, ValueError) as e:
            raise CacheFormatError(f"day record without a valid 'day': {d!r}") from e
        counts = {}
        for k, v in (d.get("eventCounts") or {}).items():
            counts[k] = parse_amount(v, where=f"day {day} eventCounts.{k}")
        amounts = {}
        for k, v in (d.get("amounts") or {}).items():
            amounts[k] = parse_amount(v, where=f"day {day} amounts.{k}")
        return cls(day=day, event_counts=counts, amounts=amounts, last_updated=d.get("lastUpdated"))
