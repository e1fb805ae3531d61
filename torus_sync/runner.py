# runner.py
"""
Incremental sync run: RPC logs -> protocol-day records -> cache document.

Pipeline per invocation:
    load cache (or start empty at the deployment block)
    -> head block -> fetch [cursor + 1, head] per source
    -> payment currency for Buy & Build -> block timestamps
    -> aggregate per protocol day -> merge -> advance cursor -> atomic save

Nothing is written unless every stage succeeded. --dry-run stops before the
save and prints the per-day changes instead.

Exit codes: 0 success (also "no new blocks"), 1 sync error, 2 usage/config.
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .adapters import EVENT_REGISTRY, get_definitions
from .aggregator import aggregate, summarize
from .blocks import BlockTimestampResolver
from .cache import CacheStore
from .deadline import Deadline
from .errors import CacheNotFound, ConfigError, PartialRangeGap, SyncError
from .fetcher import EventFetcher
from .merge import advance_cursor, empty_document, get_cursor, merge, record_gaps, reset_owned
from .models import DayRecord, RangeGap, RawEvent, utc_now_iso
from .report import describe_changes
from .rpc_pool import EndpointPool, make_web3
from .settings import Settings, load_settings
from .transactions import resolve_payment_currency


def die(msg: str, code: int = 1):
    print(f"[ERROR] {msg}", file=sys.stderr)
    sys.exit(code)


def date_to_ts(value: str) -> int:
    """YYYY-MM-DD (UTC midnight) -> unix seconds."""
    try:
        d = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None
    return int(d.timestamp())


def non_negative_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a block number, got {value!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError(f"block number must be >= 0, got {n}")
    return n


@dataclass
class RunOptions:
    from_block: Optional[int] = None
    from_ts: Optional[int] = None
    to_block: Optional[int] = None
    rebuild: bool = False
    dry_run: bool = False


@dataclass
class SyncOutcome:
    from_block: int
    to_block: int
    document: Dict
    events: int = 0
    records: Dict[int, DayRecord] = field(default_factory=dict)
    gaps: List[RangeGap] = field(default_factory=list)
    saved: bool = False
    backup: Optional[Path] = None

    @property
    def up_to_date(self) -> bool:
        return self.from_block > self.to_block


class SyncRun:
    def __init__(
        self,
        settings: Settings,
        pool: Optional[EndpointPool] = None,
        store: Optional[CacheStore] = None,
        show_progress: bool = True,
        web3_factory=make_web3,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.sleep = sleep
        self.deadline = Deadline(settings.timeout_sec, clock=clock)
        self.pool = pool or EndpointPool(
            settings.rpc.endpoints,
            probe_timeout=settings.rpc.probe_timeout_sec,
            request_timeout=settings.rpc.request_timeout_sec,
            calls_per_second=settings.rpc.calls_per_second,
            probe_ttl=settings.rpc.probe_ttl_sec,
            web3_factory=web3_factory,
            sleep=sleep,
        )
        self.store = store or CacheStore(
            settings.cache.path,
            backup_dir=settings.cache.backup_dir,
            backup=settings.cache.backup,
            keep_backups=settings.cache.keep_backups,
        )
        self.fetcher = EventFetcher(
            self.pool,
            max_range_per_call=settings.fetch.max_range_per_call,
            max_attempts=settings.fetch.max_attempts,
            concurrency=settings.fetch.concurrency,
            deadline=self.deadline,
            show_progress=show_progress,
            sleep=sleep,
        )
        self.resolver = BlockTimestampResolver(
            self.pool,
            batch_size=settings.timestamps.batch_size,
            max_attempts=settings.timestamps.max_attempts,
            deadline=self.deadline,
            show_progress=show_progress,
            sleep=sleep,
        )

    def load_document(self) -> Dict:
        try:
            doc = self.store.load()
        except CacheNotFound:
            print(f"[cache] no cache at {self.store.path}; starting from block {self.settings.deployment_block:,}")
            return empty_document()
        print(f"[cache] loaded {self.store.path} (lastBlock={get_cursor(doc)})")
        return doc

    def _start_block(self, options: RunOptions, cursor: Optional[int], head: int) -> int:
        explicit = options.from_block
        if options.from_ts is not None:
            lo = max(1, self.settings.deployment_block)
            explicit = self.resolver.find_block_by_timestamp(options.from_ts, lo=lo, hi=head)
            print(f"[info] first block at or after {options.from_ts} is {explicit:,}")

        if explicit is None:
            return cursor + 1 if cursor is not None else self.settings.deployment_block

        if cursor is not None and explicit <= cursor:
            raise ConfigError(
                f"start block {explicit:,} is at or below lastBlock {cursor:,}; "
                "those blocks are already merged (use --rebuild to resync them)"
            )
        if cursor is not None and explicit > cursor + 1:
            print(f"[warn] skipping blocks [{cursor + 1:,}, {explicit - 1:,}]; they will not be counted")
        return explicit

    def _fetch(self, from_block: int, to_block: int):
        events: List[RawEvent] = []
        gaps: List[RangeGap] = []
        for source in self.settings.sources:
            self.deadline.check(f"starting source {source.name}")
            result = self.fetcher.fetch_events(
                source.address, get_definitions(source.events), from_block, to_block
            )
            events.extend(result.events)
            gaps.extend(result.gaps)
        events.sort(key=lambda e: e.sort_key)
        return events, gaps

    def run(self, options: RunOptions) -> SyncOutcome:
        document = self.load_document()
        if options.rebuild:
            print("[info] rebuild: discarding day records and cursor")
            document = reset_owned(document)
        cursor = get_cursor(document)

        head = self.resolver.head_block()
        to_block = head if options.to_block is None else options.to_block
        if to_block > head:
            print(f"[warn] --to-block {to_block:,} is past head {head:,}; using head")
            to_block = head

        from_block = self._start_block(options, cursor, head)
        if from_block > to_block:
            print(f"[ok] no new blocks (lastBlock={cursor}, head={head:,})")
            return SyncOutcome(from_block, to_block, document)

        print(f"[info] syncing blocks [{from_block:,}, {to_block:,}] ({to_block - from_block + 1:,} blocks)")
        events, gaps = self._fetch(from_block, to_block)

        if gaps and not self.settings.fetch.allow_gaps:
            raise PartialRangeGap(gaps)

        self.deadline.check("resolving transactions")
        events = resolve_payment_currency(
            self.pool, events, EVENT_REGISTRY,
            max_attempts=self.settings.timestamps.max_attempts,
            deadline=self.deadline,
            sleep=self.sleep,
        )

        self.deadline.check("resolving timestamps")
        timestamps = self.resolver.resolve(e.block_number for e in events)

        now = utc_now_iso()
        records = aggregate(events, timestamps, epoch_start=self.settings.epoch_start, now=now)
        totals = summarize(records)
        print(f"[info] {len(events)} event(s) over {len(records)} day(s): {totals}")

        self.deadline.check("merging")
        updated = merge(document, records, now=now, epoch_start=self.settings.epoch_start)
        if gaps:
            print(f"[warn] recording {len(gaps)} gap(s) in metadata.gaps")
            updated = record_gaps(updated, gaps)
        updated = advance_cursor(updated, to_block, now=now)

        outcome = SyncOutcome(from_block, to_block, updated, events=len(events), records=records, gaps=gaps)
        if options.dry_run:
            print("[dry-run] changes that would be written:")
            lines = describe_changes(document, updated)
            for line in lines or ["  (no day records change)"]:
                print(line)
            print(f"[dry-run] lastBlock {cursor} -> {to_block}; cache not written")
            return outcome

        self.deadline.check("saving")
        outcome.backup = self.store.save(updated)
        outcome.saved = True
        print(f"[ok] ✅ synced to block {to_block:,}")
        return outcome


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="torus-sync", description="Sync TORUS protocol events into the dashboard cache.")
    ap.add_argument("--config", type=str, help="YAML settings file (default: packaged sync.yaml)")
    start = ap.add_mutually_exclusive_group()
    start.add_argument("--from-block", type=non_negative_int, help="start block (must be above lastBlock unless --rebuild)")
    start.add_argument("--from-date", type=date_to_ts, help="YYYY-MM-DD UTC; start at the first block of that day")
    ap.add_argument("--to-block", type=non_negative_int, help="stop block (default: chain head)")
    ap.add_argument("--rebuild", action="store_true", help="discard day records and cursor, resync from the start block")
    ap.add_argument("--dry-run", action="store_true", help="compute and print the changes without writing the cache")
    ap.add_argument("--cache", type=str, help="cache JSON path (overrides cache.path)")
    ap.add_argument("--timeout", type=float, help="wall-clock budget in seconds (0 = unlimited)")
    ap.add_argument("--no-backup", action="store_true", help="do not back up the previous cache file")
    ap.add_argument("--no-progress", action="store_true", help="disable progress bars")
    return ap


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    cache = settings.cache
    if args.cache:
        cache = replace(cache, path=Path(args.cache))
    if args.no_backup:
        cache = replace(cache, backup=False)
    timeout = settings.timeout_sec
    if args.timeout is not None:
        if args.timeout < 0:
            raise ConfigError(f"--timeout must be >= 0, got {args.timeout}")
        timeout = args.timeout or None
    return replace(settings, cache=cache, timeout_sec=timeout)


def main(argv: Optional[List[str]] = None, web3_factory=make_web3) -> int:
    args = build_parser().parse_args(argv)

    if args.to_block is not None and args.from_block is not None and args.from_block > args.to_block:
        die(f"--from-block {args.from_block:,} is after --to-block {args.to_block:,}", 2)

    try:
        settings = apply_overrides(load_settings(args.config), args)
    except ConfigError as e:
        die(str(e), 2)

    options = RunOptions(
        from_block=args.from_block,
        from_ts=args.from_date,
        to_block=args.to_block,
        rebuild=args.rebuild,
        dry_run=args.dry_run,
    )

    started = time.time()
    run = None
    try:
        run = SyncRun(settings, show_progress=not args.no_progress, web3_factory=web3_factory)
        run.run(options)
    except ConfigError as e:
        die(str(e), 2)
    except PartialRangeGap as e:
        for gap in e.gaps:
            print(f"[ERROR] blocks [{gap.start:,}, {gap.end:,}] not covered: {gap.reason}", file=sys.stderr)
        die(f"{e}; cache not updated (set fetch.allow_gaps to record gaps instead)", 1)
    except SyncError as e:
        die(f"{type(e).__name__}: {e}; cache not updated", 1)
    finally:
        if run is not None:
            run.pool.print_stats()

    print(f"[info] done in {time.time() - started:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
