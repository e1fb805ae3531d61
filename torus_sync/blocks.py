"""
Block timestamp lookups.

resolve() turns the block numbers referenced by fetched events into a
{block: unix seconds} map, in concurrent groups of batch_size. A block that
cannot be resolved after max_attempts (rotating endpoints between attempts)
aborts the run: every event in that block would land on an unknown day.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional

from tqdm import tqdm

from .deadline import Deadline
from .errors import EndpointUnavailable, RetriesExhausted, SyncTimeout, TimestampResolutionFailure
from .retry import with_retries
from .rpc_pool import EndpointPool


class BlockTimestampResolver:
    def __init__(
        self,
        pool: EndpointPool,
        batch_size: int = 10,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        max_backoff: float = 5.0,
        deadline: Optional[Deadline] = None,
        show_progress: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pool = pool
        self.batch_size = max(1, int(batch_size))
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.deadline = deadline
        self.show_progress = show_progress
        self.sleep = sleep
        self.cache: Dict[int, int] = {}

    def _block_timestamp(self, block_number: int) -> int:
        endpoint = self.pool.acquire(self.deadline)
        try:
            block = endpoint.w3.eth.get_block(block_number)
            if block is None:
                raise ValueError(f"block {block_number} not found")
            ts = int(block["timestamp"])
        except Exception as exc:
            self.pool.report_failure(endpoint, exc)
            raise
        self.pool.report_success(endpoint)
        return ts

    def head_block(self) -> int:
        """Current chain height (eth_blockNumber), with retries."""
        def attempt(n: int) -> int:
            endpoint = self.pool.acquire(self.deadline)
            try:
                head = int(endpoint.w3.eth.block_number)
            except Exception as exc:
                self.pool.report_failure(endpoint, exc)
                raise
            self.pool.report_success(endpoint)
            return head

        return with_retries(
            attempt,
            attempts=self.max_attempts,
            description="eth_blockNumber",
            give_up_on=(EndpointUnavailable, SyncTimeout),
            backoff_base=self.backoff_base,
            max_backoff=self.max_backoff,
            sleep=self.sleep,
        )

    def timestamp(self, block_number: int) -> int:
        """Timestamp of a single block, with retries."""
        if block_number in self.cache:
            return self.cache[block_number]
        try:
            ts = with_retries(
                lambda attempt: self._block_timestamp(block_number),
                attempts=self.max_attempts,
                description=f"getBlock {block_number}",
                give_up_on=(EndpointUnavailable, SyncTimeout),
                backoff_base=self.backoff_base,
                max_backoff=self.max_backoff,
                sleep=self.sleep,
            )
        except RetriesExhausted as exc:
            raise TimestampResolutionFailure(block_number, str(exc.last_error)) from exc
        except EndpointUnavailable as exc:
            raise TimestampResolutionFailure(block_number, str(exc)) from exc
        self.cache[block_number] = ts
        return ts

    def resolve(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        wanted = sorted({int(b) for b in block_numbers})
        missing = [b for b in wanted if b not in self.cache]
        if missing:
            print(f"[blocks] resolving {len(missing)} block timestamp(s) ({len(wanted) - len(missing)} cached)")

        batches: List[List[int]] = [missing[i:i + self.batch_size] for i in range(0, len(missing), self.batch_size)]
        with tqdm(total=len(missing), desc="blocks", unit="block", disable=not self.show_progress) as progress:
            for batch in batches:
                if self.deadline is not None:
                    self.deadline.check(f"resolving timestamps for blocks {batch[0]}-{batch[-1]}")
                if len(batch) == 1:
                    self.timestamp(batch[0])
                else:
                    with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                        # list() re-raises the first failure in block order
                        list(executor.map(self.timestamp, batch))
                progress.update(len(batch))

        return {b: self.cache[b] for b in wanted}

    def find_block_by_timestamp(self, target_ts: int, lo: int = 1, hi: Optional[int] = None) -> int:
        """
        Binary search for the first block whose timestamp >= target_ts.
        Assumes timestamps increase with block number. Returns hi when
        every block in range is older than target_ts.
        """
        if hi is None:
            hi = self.head_block()
        best = hi
        while lo <= hi:
            mid = (lo + hi) // 2
            if self.timestamp(mid) >= target_ts:
                best = mid
                hi = mid - 1
            else:
                lo = mid + 1
        return best
