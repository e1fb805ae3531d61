"""
Round-robin JSON-RPC endpoint pool with liveness probing and rate limiting.

Rotates across interchangeable public Ethereum RPC endpoints, which have
uncorrelated and frequently changing availability and rate limits:
- acquire() probes the current candidate with eth_blockNumber under a short
  timeout and moves on to the next one when it fails
- every endpoint is tried at most once per acquisition, after that
  EndpointUnavailable is raised
- a 429/503-style error puts the endpoint into exponential backoff, during
  which acquire() skips it; when nothing else is left, acquire() sleeps until
  the earliest backoff ends and probes the waiting endpoints again

The pool is an ordinary object owned by one sync run and passed to the
components that need RPC access. There is no module-level connection state.

Usage:
    pool = EndpointPool(["https://ethereum.publicnode.com", "https://eth.llamarpc.com"])
    endpoint = pool.acquire()
    block = endpoint.w3.eth.block_number
    pool.report_success(endpoint)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from web3 import Web3

from .deadline import Deadline
from .errors import ConfigError, EndpointUnavailable
from .retry import is_rate_limit_error


def make_web3(url: str, timeout: float) -> Web3:
    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))


def endpoint_label(url: str) -> str:
    """Scheme and host only; paths often embed API keys."""
    parsed = urlparse(url)
    if not parsed.netloc:
        return url
    return f"{parsed.scheme}://{parsed.netloc}"


class RateLimiter:
    """
    Per-endpoint pacing plus backoff after rate-limit errors.

    Public endpoints are conservative: ~5 calls/second each. With
    calls_per_second=None only the backoff part is active.
    """

    def __init__(self, calls_per_second: Optional[float] = None, max_backoff: float = 300):
        self.min_interval = 1.0 / calls_per_second if calls_per_second else 0.0
        self.last_call = 0.0
        self.lock = threading.Lock()
        # Backoff state for 429/503 errors
        self.backoff_until = 0.0
        self.consecutive_errors = 0
        self.max_backoff = max_backoff

    def wait(self):
        """Wait if necessary to respect the pacing interval"""
        if self.min_interval <= 0:
            return
        with self.lock:
            now = time.time()
            time_since_last = now - self.last_call
            if time_since_last < self.min_interval:
                time.sleep(self.min_interval - time_since_last)
            self.last_call = time.time()

    def is_backing_off(self) -> bool:
        with self.lock:
            return time.time() < self.backoff_until

    def get_backoff_remaining(self) -> float:
        with self.lock:
            return max(0.0, self.backoff_until - time.time())

    def report_error(self, is_rate_limit: bool = False):
        """Rate-limit errors trigger backoff: 5s, 10s, 20s... up to max_backoff"""
        if not is_rate_limit:
            return
        with self.lock:
            self.consecutive_errors += 1
            backoff_time = min(5 * (2 ** (self.consecutive_errors - 1)), self.max_backoff)
            self.backoff_until = time.time() + backoff_time
        print(f"[RateLimiter] Rate limit hit ({self.consecutive_errors}x), backing off {backoff_time}s")

    def report_success(self):
        with self.lock:
            if self.consecutive_errors > 0:
                self.consecutive_errors = 0
                self.backoff_until = 0.0


@dataclass
class Endpoint:
    url: str
    w3: Web3
    probe_w3: Web3
    rate_limiter: RateLimiter
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    consecutive_failures: int = 0
    total_calls: int = 0
    total_failures: int = 0
    last_error: Optional[str] = field(default=None, repr=False)

    @property
    def label(self) -> str:
        return endpoint_label(self.url)


class EndpointPool:
    """
    Round-robin pool over a fixed, ordered list of endpoint URLs.

    Thread-safe: all liveness bookkeeping happens under one lock. The network
    probe itself runs outside the lock.
    """

    def __init__(
        self,
        urls: List[str],
        probe_timeout: float = 5.0,
        request_timeout: float = 30.0,
        calls_per_second: Optional[float] = None,
        probe_ttl: float = 30.0,
        web3_factory: Callable[[str, float], Web3] = make_web3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        unique: List[str] = []
        for url in urls or []:
            url = (url or "").strip()
            if url and url not in unique:
                unique.append(url)
        if not unique:
            raise ConfigError("endpoint pool needs at least one RPC URL")

        self.probe_timeout = probe_timeout
        self.probe_ttl = probe_ttl
        self.clock = clock
        self.sleep = sleep
        self.lock = threading.Lock()
        self.current_idx = 0
        self.endpoints: List[Endpoint] = [
            Endpoint(
                url=url,
                w3=web3_factory(url, request_timeout),
                probe_w3=web3_factory(url, probe_timeout),
                rate_limiter=RateLimiter(calls_per_second),
            )
            for url in unique
        ]
        print(f"[RPC Pool] {len(self.endpoints)} endpoint(s) configured")

    @property
    def urls(self) -> List[str]:
        return [ep.url for ep in self.endpoints]

    def _recently_ok(self, ep: Endpoint) -> bool:
        if self.probe_ttl <= 0 or ep.last_success is None or ep.consecutive_failures:
            return False
        return self.clock() - ep.last_success < self.probe_ttl

    def probe(self, ep: Endpoint) -> int:
        """Lightweight liveness call. Returns the endpoint's head block."""
        ep.rate_limiter.wait()
        return int(ep.probe_w3.eth.block_number)

    def _take(self, idx: int) -> Endpoint:
        """Make endpoints[idx] current, probing it first unless it was used recently."""
        ep = self.endpoints[idx]
        if self._recently_ok(ep):
            with self.lock:
                self.current_idx = idx
            ep.rate_limiter.wait()
            return ep

        block = self.probe(ep)
        was_failing = ep.consecutive_failures > 0 or ep.last_success is None
        self.report_success(ep)
        with self.lock:
            self.current_idx = idx
        if was_failing:
            print(f"[RPC Pool] ✅ {ep.label} ok (block {block})")
        return ep

    def acquire(self, deadline: Optional[Deadline] = None) -> Endpoint:
        """
        Return the next live endpoint, starting from the current one.

        When the only endpoints left are backing off after rate-limit errors,
        waits until the first backoff ends (never past ``deadline``) and
        probes those once more.

        Raises:
            EndpointUnavailable: every endpoint failed its probe
            SyncTimeout: the deadline ran out while waiting on a backoff
        """
        with self.lock:
            start = self.current_idx
        n = len(self.endpoints)
        last_error: Optional[BaseException] = None
        waiting: List[int] = []

        for i in range(n):
            idx = (start + i) % n
            ep = self.endpoints[idx]
            if ep.rate_limiter.is_backing_off():
                remaining = ep.rate_limiter.get_backoff_remaining()
                print(f"[RPC Pool] skip {ep.label}: backing off {remaining:.0f}s")
                waiting.append(idx)
                continue
            try:
                return self._take(idx)
            except Exception as e:
                last_error = e
                self.report_failure(ep, e)
                print(f"[RPC Pool] ❌ {ep.label} probe failed: {e}")

        if waiting:
            wait = min(self.endpoints[idx].rate_limiter.get_backoff_remaining() for idx in waiting)
            if deadline is not None and deadline.remaining() is not None:
                wait = min(wait, deadline.remaining())
            print(f"[RPC Pool] all usable endpoints backing off, waiting {wait:.1f}s")
            if wait > 0:
                self.sleep(wait)
            if deadline is not None:
                deadline.check("waiting for a rate-limited endpoint")
            for idx in waiting:
                ep = self.endpoints[idx]
                try:
                    return self._take(idx)
                except Exception as e:
                    last_error = e
                    self.report_failure(ep, e)
                    print(f"[RPC Pool] ❌ {ep.label} probe failed after backoff: {e}")

        raise EndpointUnavailable(self.urls, last_error)

    def report_success(self, ep: Endpoint):
        with self.lock:
            ep.total_calls += 1
            ep.consecutive_failures = 0
            ep.last_success = self.clock()
        ep.rate_limiter.report_success()

    def report_failure(self, ep: Endpoint, error: BaseException):
        """Mark a failed call and rotate past the endpoint if it is current."""
        with self.lock:
            ep.total_calls += 1
            ep.total_failures += 1
            ep.consecutive_failures += 1
            ep.last_failure = self.clock()
            ep.last_error = str(error)
            idx = self.endpoints.index(ep)
            if self.current_idx == idx:
                self.current_idx = (idx + 1) % len(self.endpoints)
        ep.rate_limiter.report_error(is_rate_limit=is_rate_limit_error(error))

    def stats(self) -> List[Dict[str, object]]:
        with self.lock:
            return [
                {
                    "endpoint": ep.label,
                    "calls": ep.total_calls,
                    "failures": ep.total_failures,
                    "consecutive_failures": ep.consecutive_failures,
                }
                for ep in self.endpoints
            ]

    def print_stats(self):
        print("[RPC Pool] summary:")
        for row in self.stats():
            calls = row["calls"]
            ok = calls - row["failures"]
            rate = (ok / calls * 100) if calls else 0.0
            print(f"   {row['endpoint']}: {ok}/{calls} ok ({rate:.1f}%)")
