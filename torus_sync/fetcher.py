"""
Chunked eth_getLogs fetcher.

Splits a block range into sub-ranges no larger than max_range_per_call and
queries each one through the endpoint pool:
- every failed attempt is reported to the pool, which rotates endpoints
- errors that mean "too many blocks/results" halve the sub-range and queue
  the remainder
- the pieces of one sub-range share a single budget of max_attempts failed
  attempts; once it is spent the uncovered rest of the sub-range becomes one
  RangeGap, returned next to the events and never dropped

Events come back in ascending (block_number, log_index) order.
"""

from __future__ import annotations

import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from eth_utils import to_checksum_address
from hexbytes import HexBytes
from tqdm import tqdm

from .adapters.base import EventDefinition
from .deadline import Deadline
from .errors import EndpointUnavailable, EventDecodeError, RetriesExhausted, SyncTimeout
from .models import FetchResult, RangeGap, RawEvent
from .retry import is_range_error, with_retries
from .rpc_pool import EndpointPool

DEFAULT_MAX_RANGE = 2000


def split_range(from_block: int, to_block: int, size: int) -> List[Tuple[int, int]]:
    """Consecutive inclusive sub-ranges of at most ``size`` blocks."""
    if size < 1:
        raise ValueError("sub-range size must be >= 1")
    out = []
    start = from_block
    while start <= to_block:
        end = min(start + size - 1, to_block)
        out.append((start, end))
        start = end + 1
    return out


class EventFetcher:
    def __init__(
        self,
        pool: EndpointPool,
        max_range_per_call: int = DEFAULT_MAX_RANGE,
        max_attempts: int = 5,
        concurrency: int = 1,
        backoff_base: float = 0.5,
        max_backoff: float = 10.0,
        deadline: Optional[Deadline] = None,
        show_progress: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pool = pool
        self.max_range_per_call = max_range_per_call
        self.max_attempts = max_attempts
        self.concurrency = max(1, int(concurrency))
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.deadline = deadline
        self.show_progress = show_progress
        self.sleep = sleep

    def fetch_events(
        self,
        contract: str,
        events: Union[EventDefinition, Sequence[EventDefinition]],
        from_block: int,
        to_block: int,
        max_range_per_call: Optional[int] = None,
    ) -> FetchResult:
        """
        Fetch and decode every log of ``events`` emitted by ``contract`` in
        [from_block, to_block]. Uncovered sub-ranges are listed in
        ``FetchResult.gaps``.
        """
        definitions = [events] if isinstance(events, EventDefinition) else list(events)
        if not definitions:
            raise ValueError("fetch_events needs at least one event definition")
        if from_block > to_block:
            return FetchResult()

        address = to_checksum_address(contract)
        size = max_range_per_call or self.max_range_per_call
        ranges = split_range(from_block, to_block, size)
        names = ", ".join(d.name for d in definitions)
        print(f"[fetch] {address} {names}: blocks [{from_block:,}, {to_block:,}] in {len(ranges)} sub-range(s)")

        parts: List[FetchResult] = []
        progress = tqdm(total=len(ranges), desc="getLogs", unit="range", disable=not self.show_progress)
        try:
            if self.concurrency == 1:
                for start, end in ranges:
                    parts.append(self._fetch_subrange(address, definitions, start, end))
                    progress.update(1)
            else:
                with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                    futures = [
                        executor.submit(self._fetch_subrange, address, definitions, start, end)
                        for start, end in ranges
                    ]
                    try:
                        for fut in futures:
                            parts.append(fut.result())
                            progress.update(1)
                    except BaseException:
                        for fut in futures:
                            fut.cancel()
                        raise
        finally:
            progress.close()

        result = FetchResult()
        for part in parts:
            result.extend(part)
        result.events = self._dedupe(result.events)

        print(f"[fetch] {names}: {len(result.events)} event(s), {len(result.gaps)} gap(s)")
        return result

    def _fetch_subrange(
        self,
        address: str,
        definitions: List[EventDefinition],
        start: int,
        end: int,
    ) -> FetchResult:
        topics = [d.topic0 for d in definitions]
        result = FetchResult()
        # contiguous, ascending pieces still to query; together they cover [pending[0][0], end]
        pending = deque([(start, end)])

        def attempt(n: int):
            while pending:
                s, e = pending[0]
                if self.deadline is not None:
                    self.deadline.check(f"fetching blocks [{s}, {e}]")
                logs = self._get_logs(address, topics, s, e)
                pending.popleft()
                result.events.extend(self._decode(logs, definitions))

        def on_error(n: int, exc: BaseException):
            s, e = pending[0]
            print(f"[warn] getLogs [{s:,}, {e:,}] attempt {n}/{self.max_attempts}: {exc}")
            if is_range_error(exc) and e > s:
                mid = s + (e - s) // 2
                pending[0] = (s, mid)
                pending.insert(1, (mid + 1, e))
                print(f"[fetch] shrinking window to [{s:,}, {mid:,}]")

        # one attempt budget for the whole sub-range, shared by its halved pieces
        try:
            with_retries(
                attempt,
                attempts=self.max_attempts,
                description=f"getLogs [{start}, {end}]",
                give_up_on=(EndpointUnavailable, SyncTimeout, EventDecodeError),
                on_error=on_error,
                backoff_base=self.backoff_base,
                max_backoff=self.max_backoff,
                sleep=self.sleep,
            )
        except RetriesExhausted as exc:
            gap = RangeGap(pending[0][0], end, str(exc.last_error))
            print(f"[warn] ❌ blocks [{gap.start:,}, {gap.end:,}] not covered: {exc.last_error}")
            result.gaps.append(gap)

        return result

    def _get_logs(self, address: str, topics: List[str], from_block: int, to_block: int):
        endpoint = self.pool.acquire(self.deadline)
        try:
            logs = endpoint.w3.eth.get_logs({
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": address,
                "topics": [topics],  # OR over topic0
            })
        except Exception as exc:
            self.pool.report_failure(endpoint, exc)
            raise
        self.pool.report_success(endpoint)
        return logs

    @staticmethod
    def _decode(logs: Iterable, definitions: List[EventDefinition]) -> List[RawEvent]:
        by_topic: Dict[bytes, EventDefinition] = {bytes(HexBytes(d.topic0)): d for d in definitions}
        out = []
        for log in logs:
            if log.get("removed"):
                continue
            topics = log.get("topics") or []
            if not topics:
                continue
            definition = by_topic.get(bytes(HexBytes(topics[0])))
            if definition is None:
                continue
            out.append(definition.decode(log))
        return out

    @staticmethod
    def _dedupe(events: List[RawEvent]) -> List[RawEvent]:
        seen = set()
        out = []
        for ev in sorted(events, key=lambda x: x.sort_key):
            key = (ev.transaction_hash, ev.log_index)
            if key in seen:
                continue
            seen.add(key)
            out.append(ev)
        return out
