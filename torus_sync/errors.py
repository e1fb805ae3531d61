"""
Error taxonomy for the sync pipeline.

Leaf components raise these typed errors and never swallow them; only the
runner's ``main()`` catches them, prints a diagnostic and exits non-zero.
"""

from typing import List, Optional


class SyncError(Exception):
    """Base class for every failure the runner knows how to report."""


class ConfigError(SyncError):
    """Invalid or missing settings."""


class EndpointUnavailable(SyncError):
    """Every endpoint in the pool failed during a single acquisition."""

    def __init__(self, urls: List[str], last_error: Optional[BaseException] = None):
        self.urls = list(urls)
        self.last_error = last_error
        detail = f" (last error: {last_error})" if last_error else ""
        super().__init__(f"no RPC endpoint available, tried {len(self.urls)}{detail}")


class RetriesExhausted(SyncError):
    """A bounded retry loop ran out of attempts."""

    def __init__(self, description: str, attempts: int, last_error: BaseException):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempt(s): {last_error}")


class PartialRangeGap(SyncError):
    """One or more block sub-ranges could not be fetched."""

    def __init__(self, gaps):
        self.gaps = list(gaps)
        ranges = ", ".join(f"[{g.start}, {g.end}]" for g in self.gaps)
        super().__init__(f"{len(self.gaps)} block range(s) not covered: {ranges}")


class EventDecodeError(SyncError):
    """A log matched a known topic but its payload could not be decoded."""


class TimestampResolutionFailure(SyncError):
    """A block timestamp could not be resolved after retries."""

    def __init__(self, block_number: int, reason: str = ""):
        self.block_number = block_number
        suffix = f": {reason}" if reason else ""
        super().__init__(f"could not resolve timestamp of block {block_number}{suffix}")


class TransactionResolutionFailure(SyncError):
    """A transaction needed to classify an event could not be fetched."""

    def __init__(self, tx_hash: str, reason: str = ""):
        self.tx_hash = tx_hash
        suffix = f": {reason}" if reason else ""
        super().__init__(f"could not fetch transaction {tx_hash}{suffix}")


class CacheNotFound(SyncError):
    """No cache document exists yet at the configured path."""


class CacheFormatError(SyncError):
    """The cache document exists but cannot be parsed or holds bad values."""


class PersistenceFailure(SyncError):
    """Writing, backing up or renaming the cache document failed."""


class SyncTimeout(SyncError):
    """The run exceeded its wall-clock budget before persisting anything."""
