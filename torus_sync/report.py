# report.py
# Tabular views of day records: DataFrame export and the dry-run diff.
# Raw amounts stay as exact decimal strings; display columns divide by
# 10**decimals with Decimal, never float.

from __future__ import annotations

from decimal import Decimal, localcontext
from typing import Dict, List, Mapping, Optional

import pandas as pd

from .merge import records_from_document
from .models import DayRecord
from .protocol_day import PROTOCOL_EPOCH, day_to_date

TOKEN_DECIMALS = 18


def format_units(value: int, decimals: int = TOKEN_DECIMALS, places: int = 4) -> str:
    """Human-readable token amount, e.g. 1500000000000000000 -> '1.5000'."""
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = Decimal(int(value)) / (Decimal(10) ** decimals)
        return f"{scaled:,.{places}f}"


def records_frame(
    records: Mapping[int, DayRecord],
    epoch_start: int = PROTOCOL_EPOCH,
    display: bool = False,
    decimals: int = TOKEN_DECIMALS,
) -> pd.DataFrame:
    """
    One row per protocol day. Count columns are named count_<category>;
    amount columns keep the raw decimal string. With display=True an extra
    <amount>_fmt column holds the scaled value.
    """
    categories = sorted({c for r in records.values() for c in r.event_counts})
    amount_keys = sorted({k for r in records.values() for k in r.amounts})

    rows = []
    for day in sorted(records):
        r = records[day]
        row = {"day": day, "date": day_to_date(day, epoch_start)}
        for c in categories:
            row[f"count_{c}"] = r.event_counts.get(c, 0)
        for k in amount_keys:
            raw = r.amounts.get(k, 0)
            row[k] = str(raw)
            if display:
                row[f"{k}_fmt"] = format_units(raw, decimals)
        row["lastUpdated"] = r.last_updated
        rows.append(row)

    columns = ["day", "date"] + [f"count_{c}" for c in categories]
    for k in amount_keys:
        columns.append(k)
        if display:
            columns.append(f"{k}_fmt")
    columns.append("lastUpdated")
    return pd.DataFrame(rows, columns=columns)


def document_frame(document: Mapping, epoch_start: int = PROTOCOL_EPOCH, display: bool = False) -> pd.DataFrame:
    return records_frame(records_from_document(document), epoch_start, display=display)


def describe_changes(before: Mapping, after: Mapping) -> List[str]:
    """Per-day lines describing what a merge added, for --dry-run output."""
    old = records_from_document(before)
    new = records_from_document(after)
    lines: List[str] = []
    for day in sorted(new):
        prev: Optional[DayRecord] = old.get(day)
        cur = new[day]
        delta_counts: Dict[str, int] = {}
        for k, v in cur.event_counts.items():
            d = v - (prev.event_counts.get(k, 0) if prev else 0)
            if d:
                delta_counts[k] = d
        delta_amounts: Dict[str, int] = {}
        for k, v in cur.amounts.items():
            d = v - (prev.amounts.get(k, 0) if prev else 0)
            if d:
                delta_amounts[k] = d
        if not delta_counts and not delta_amounts:
            continue
        tag = "new" if prev is None else "upd"
        counts = ", ".join(f"{k}+{v}" for k, v in sorted(delta_counts.items()))
        amounts = ", ".join(f"{k}+{format_units(v)}" for k, v in sorted(delta_amounts.items()))
        lines.append(f"  [{tag}] day {day}: {counts}" + (f" | {amounts}" if amounts else ""))
    return lines
