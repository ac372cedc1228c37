"""
Fallback read path: cache → database → live node.

A read is an ordered list of tiers tried one after the other. Every attempt
yields a tagged TierResult; the first OK wins. Misses and failures of earlier
tiers are logged and counted but never returned to the caller, and nothing is
written back into the tiers that missed. When every tier fails, the failure
of the last tier is raised.
"""
import asyncio
import functools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from cache.errors import MISS_ERRORS, NotFoundError, TierTimeoutError
from cache.monitoring import CacheMonitor

logger = structlog.get_logger()

TierLookup = Callable[[], Awaitable[Any]]
Acceptor = Callable[[Any], bool]


class Outcome(str, Enum):
    OK = "ok"
    MISS = "miss"
    ERROR = "error"


@dataclass
class TierResult:
    """Result of one tier attempt."""
    tier: str
    outcome: Outcome
    data: Any = None
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, tier: str, data: Any) -> "TierResult":
        return cls(tier, Outcome.OK, data=data)

    @classmethod
    def miss(cls, tier: str, error: Exception) -> "TierResult":
        return cls(tier, Outcome.MISS, error=error)

    @classmethod
    def failed(cls, tier: str, error: Exception) -> "TierResult":
        return cls(tier, Outcome.ERROR, error=error)


@dataclass
class Tier:
    """A named lookup; ``accept`` rejects results that should count as a miss."""
    name: str
    lookup: TierLookup
    accept: Optional[Acceptor] = None


def sync_tier(name: str, func: Callable[..., Any], *args: Any,
              accept: Optional[Acceptor] = None) -> Tier:
    """Tier backed by a fast in-process call (the block window)."""
    async def lookup():
        return func(*args)
    return Tier(name, lookup, accept)


def thread_tier(name: str, func: Callable[..., Any], *args: Any,
                accept: Optional[Acceptor] = None) -> Tier:
    """Tier backed by a blocking call, run in a worker thread (the database)."""
    return Tier(name, functools.partial(asyncio.to_thread, func, *args), accept)


def async_tier(name: str, func: Callable[..., Awaitable[Any]], *args: Any,
               accept: Optional[Acceptor] = None) -> Tier:
    """Tier backed by a coroutine function (the node RPC, redis)."""
    return Tier(name, functools.partial(func, *args), accept)


class FallbackReader:
    """
    Runs tier lookups in order and returns the first success.

    Args:
        timeout: Default per-tier deadline in seconds
        monitor: Optional metrics recorder
    """

    def __init__(self, timeout: float = 2.0, monitor: Optional[CacheMonitor] = None):
        self.timeout = timeout
        self.monitor = monitor

    async def attempt(self, operation: str, tier: Tier, timeout: float) -> TierResult:
        """Run a single tier lookup and tag its result."""
        started = time.monotonic()
        try:
            data = await asyncio.wait_for(tier.lookup(), timeout)
        except MISS_ERRORS as e:
            result = TierResult.miss(tier.name, e)
        except asyncio.TimeoutError:
            result = TierResult.failed(tier.name, TierTimeoutError(tier.name, timeout))
        except Exception as e:
            result = TierResult.failed(tier.name, e)
        else:
            if tier.accept is not None and not tier.accept(data):
                result = TierResult.miss(tier.name, NotFoundError(f"{operation}: unusable result"))
            else:
                result = TierResult.ok(tier.name, data)

        if self.monitor:
            self.monitor.record_tier_result(tier.name, operation, result.outcome.value)
            self.monitor.record_latency(tier.name, operation, time.monotonic() - started)

        if result.outcome is Outcome.MISS:
            logger.debug("tier_miss", tier=tier.name, operation=operation, error=str(result.error))
        elif result.outcome is Outcome.ERROR:
            logger.warning("tier_failed", tier=tier.name, operation=operation,
                           error_type=type(result.error).__name__, error=str(result.error))
        return result

    async def read(self, operation: str, tiers: Sequence[Tier],
                   timeout: Optional[float] = None) -> TierResult:
        """
        Try ``tiers`` in order and return the first successful result.

        Args:
            operation: Name of the read, used for logs and metrics
            tiers: Tiers in fallback order
            timeout: Per-tier deadline, defaults to the reader's timeout

        Returns:
            The TierResult of the tier that answered

        Raises:
            The error of the last tier when no tier answers
        """
        timeout = timeout if timeout is not None else self.timeout
        last: Optional[TierResult] = None
        for tier in tiers:
            last = await self.attempt(operation, tier, timeout)
            if last.outcome is Outcome.OK:
                logger.debug("tier_served", tier=tier.name, operation=operation)
                return last

        if last is None:
            raise NotFoundError(f"{operation}: no tier configured")
        raise last.error
