#!/usr/bin/env python3
"""
Single Day Verification

Recomputes one protocol day from scratch (every configured event inside the
day's block window) and compares it with the record in the cache.
Read-only: the cache is never written.

Usage:
    python scripts/verify_day.py --day 12
    python scripts/verify_day.py --day 12 --cache public/data/cached-data.json
"""

import sys
import argparse
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from torus_sync.adapters import EVENT_REGISTRY, get_definitions
from torus_sync.aggregator import aggregate
from torus_sync.blocks import BlockTimestampResolver
from torus_sync.cache import CacheStore
from torus_sync.errors import SyncError
from torus_sync.fetcher import EventFetcher
from torus_sync.merge import records_from_document
from torus_sync.models import DayRecord
from torus_sync.protocol_day import day_to_date, day_window
from torus_sync.report import format_units
from torus_sync.rpc_pool import EndpointPool
from torus_sync.settings import load_settings
from torus_sync.transactions import resolve_payment_currency


def recompute_day(settings, pool: EndpointPool, day: int) -> DayRecord:
    resolver = BlockTimestampResolver(pool, batch_size=settings.timestamps.batch_size)
    start_ts, end_ts = day_window(day, settings.epoch_start)
    head = resolver.head_block()
    lo = max(1, settings.deployment_block)
    first = resolver.find_block_by_timestamp(start_ts, lo=lo, hi=head)
    last = resolver.find_block_by_timestamp(end_ts, lo=first, hi=head)
    if resolver.timestamp(last) >= end_ts:
        last -= 1
    print(f"[info] day {day} ({day_to_date(day, settings.epoch_start)}): blocks [{first:,}, {last:,}]")

    fetcher = EventFetcher(pool, max_range_per_call=settings.fetch.max_range_per_call,
                           max_attempts=settings.fetch.max_attempts, show_progress=True)
    events = []
    for source in settings.sources:
        result = fetcher.fetch_events(source.address, get_definitions(source.events), first, last)
        if result.gaps:
            raise SyncError(f"{len(result.gaps)} gap(s) while fetching {source.name}; cannot verify")
        events.extend(result.events)

    events = resolve_payment_currency(pool, events, EVENT_REGISTRY)
    timestamps = resolver.resolve(e.block_number for e in events)
    records = aggregate(events, timestamps, epoch_start=settings.epoch_start)
    # events before the epoch clamp into day 1; keep only the requested day
    return records.get(day) or DayRecord(day=day)


def compare(cached: DayRecord, fresh: DayRecord) -> int:
    mismatches = 0
    print(f"\n{'field':<32}{'cache':>28}{'chain':>28}")
    for label, a, b in (
        [("count " + k, cached.event_counts.get(k, 0), fresh.event_counts.get(k, 0))
         for k in sorted(set(cached.event_counts) | set(fresh.event_counts))]
        + [(k, cached.amounts.get(k, 0), fresh.amounts.get(k, 0))
           for k in sorted(set(cached.amounts) | set(fresh.amounts))]
    ):
        mark = "" if a == b else "  <-- mismatch"
        if a != b:
            mismatches += 1
        if label.startswith("count "):
            print(f"{label:<32}{a:>28}{b:>28}{mark}")
        else:
            print(f"{label:<32}{format_units(a):>28}{format_units(b):>28}{mark}")
    return mismatches


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--day", type=int, required=True, help="protocol day (>= 1)")
    ap.add_argument("--config", type=str, help="YAML settings file")
    ap.add_argument("--cache", type=str, help="cache JSON path (overrides cache.path)")
    args = ap.parse_args()

    if args.day < 1:
        print("[ERROR] protocol days start at 1", file=sys.stderr)
        return 2

    try:
        settings = load_settings(args.config)
        store = CacheStore(args.cache or settings.cache.path, backup=False)
        cached = records_from_document(store.load()).get(args.day) or DayRecord(day=args.day)
        pool = EndpointPool(settings.rpc.endpoints, probe_timeout=settings.rpc.probe_timeout_sec,
                            request_timeout=settings.rpc.request_timeout_sec)
        fresh = recompute_day(settings, pool, args.day)
    except SyncError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    mismatches = compare(cached, fresh)
    if mismatches:
        print(f"\n[warn] ❌ day {args.day}: {mismatches} field(s) differ")
        return 1
    print(f"\n[ok] ✅ day {args.day} matches the chain")
    return 0


if __name__ == "__main__":
    sys.exit(main())
