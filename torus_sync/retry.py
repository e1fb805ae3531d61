"""
Bounded retry wrapper and provider error classification.

Every RPC retry in the pipeline goes through ``with_retries``; no loop here
retries forever.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

import requests

from .errors import RetriesExhausted

T = TypeVar("T")

RATE_LIMIT_PATTERNS = [
    "429",
    "too many requests",
    "rate limit",
    "compute units",
    "rate exceeded",
    "503",
    "service unavailable",
]

# Provider messages that mean "ask for fewer blocks"
RANGE_ERROR_PATTERNS = [
    "range too large",
    "block range",
    "more than 10000 results",
    "query returned more than",
    "response size exceeded",
    "log response size",
    "limit exceeded",
    "too many logs",
    "timeout",
    "timed out",
]


def _message(error: BaseException) -> str:
    return str(error).lower()


def is_rate_limit_error(error: BaseException) -> bool:
    msg = _message(error)
    return any(p in msg for p in RATE_LIMIT_PATTERNS)


def is_range_error(error: BaseException) -> bool:
    """True when a smaller eth_getLogs window is likely to succeed."""
    if isinstance(error, requests.exceptions.Timeout):
        return True
    msg = _message(error)
    return any(p in msg for p in RANGE_ERROR_PATTERNS)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base, 2*base, 4*base... capped."""
    if base <= 0:
        return 0.0
    return min(base * (2 ** (attempt - 1)), cap)


def with_retries(
    fn: Callable[[int], T],
    *,
    attempts: int,
    description: str = "rpc call",
    give_up_on: Tuple[Type[BaseException], ...] = (),
    on_error: Optional[Callable[[int, BaseException], None]] = None,
    backoff_base: float = 0.0,
    max_backoff: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn(attempt)`` until it returns, at most ``attempts`` times.

    ``attempt`` is 1-based. Exceptions listed in ``give_up_on`` propagate
    immediately. ``on_error(attempt, exc)`` runs after each failed attempt,
    before the backoff sleep, and may adjust state the next attempt reads.
    When every attempt fails, raises ``RetriesExhausted`` chained to the last
    error.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return fn(attempt)
        except give_up_on:
            raise
        except Exception as e:
            last_error = e
            if on_error is not None:
                on_error(attempt, e)
            if attempt < attempts:
                delay = backoff_delay(attempt, backoff_base, max_backoff)
                if delay > 0:
                    sleep(delay)

    raise RetriesExhausted(description, attempts, last_error) from last_error
