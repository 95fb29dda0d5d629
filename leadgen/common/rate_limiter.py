"""
Per-account rate limiting for the profile/company provider.

Each external account must leave a randomized gap between two calls, drawn
uniformly from a fixed window on every call so concurrent callers do not fall
into a synchronized rhythm that the provider's abuse detection picks up.

The limiter is an explicit object owned by the service instance and passed
to whoever needs it (stage executor, batch distributor). Clock, sleep and
random source are injectable for tests.

Usage:
    limiter = AccountRateLimiter(min_delay_ms=2000, max_delay_ms=8000)

    async with limiter.slot(account_id):
        payload = await client.get_profile(account_id, profile_id)

    # or
    payload = await limiter.call(account_id, client.get_profile, account_id, profile_id)
"""

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from leadgen.common.config import Config

logger = logging.getLogger(__name__)


@dataclass
class AccountRateStats:
    """Statistics for one external account."""
    last_call_at: Optional[float] = None
    total_calls: int = 0
    failed_calls: int = 0
    waits_count: int = 0
    total_wait_seconds: float = 0.0


class AccountRateLimiter:
    """
    Randomized minimum-gap scheduler keyed by account id.

    ``last_call_at`` is updated when a call completes, whether it succeeded or
    failed, and never moves backwards.
    """

    def __init__(
        self,
        min_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            min_delay_ms: Lower bound of the gap window (default from Config)
            max_delay_ms: Upper bound of the gap window (default from Config)
            clock: Monotonic clock returning seconds
            sleep: Coroutine function used to wait
            rng: Random source for the gap draw
        """
        self.min_delay_ms = Config.RATE_LIMIT_MIN_DELAY_MS if min_delay_ms is None else min_delay_ms
        self.max_delay_ms = Config.RATE_LIMIT_MAX_DELAY_MS if max_delay_ms is None else max_delay_ms
        if self.min_delay_ms < 0 or self.min_delay_ms > self.max_delay_ms:
            raise ValueError(
                f"Invalid delay window: {self.min_delay_ms}-{self.max_delay_ms}ms"
            )

        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._stats: Dict[str, AccountRateStats] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _state(self, account_id: str) -> AccountRateStats:
        if account_id not in self._stats:
            self._stats[account_id] = AccountRateStats()
        return self._stats[account_id]

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        if account_id not in self._locks:
            self._locks[account_id] = asyncio.Lock()
        return self._locks[account_id]

    def draw_delay(self) -> float:
        """Draw a fresh gap, in seconds."""
        return self._rng.randint(self.min_delay_ms, self.max_delay_ms) / 1000.0

    def last_call_at(self, account_id: str) -> Optional[float]:
        return self._state(account_id).last_call_at

    def seconds_since_last_call(self, account_id: str) -> float:
        """Idle time of an account; never-used accounts are infinitely idle."""
        last = self._state(account_id).last_call_at
        if last is None:
            return float("inf")
        return max(0.0, self._clock() - last)

    async def await_turn(self, account_id: str) -> float:
        """
        Suspend until a freshly drawn gap has elapsed since the account's
        last completed call.

        Returns:
            Seconds actually waited
        """
        last = self._state(account_id).last_call_at
        if last is None:
            return 0.0

        delay = self.draw_delay()
        remaining = (last + delay) - self._clock()
        if remaining <= 0:
            return 0.0

        state = self._state(account_id)
        state.waits_count += 1
        state.total_wait_seconds += remaining
        logger.debug(f"Account {account_id}: waiting {remaining:.2f}s before next call")
        await self._sleep(remaining)
        return remaining

    def record_call(self, account_id: str, failed: bool = False) -> None:
        """Mark a call as completed now."""
        state = self._state(account_id)
        now = self._clock()
        if state.last_call_at is None or now > state.last_call_at:
            state.last_call_at = now
        state.total_calls += 1
        if failed:
            state.failed_calls += 1

    @asynccontextmanager
    async def slot(self, account_id: str):
        """
        Hold the account for one call.

        The gap is re-checked under the account lock immediately before the
        call, and the completion time is recorded even if the call raises.
        """
        async with self._lock_for(account_id):
            await self.await_turn(account_id)
            failed = True
            try:
                yield
                failed = False
            finally:
                self.record_call(account_id, failed=failed)

    async def call(self, account_id: str, operation: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run one provider call through the account's slot."""
        async with self.slot(account_id):
            return await operation(*args, **kwargs)

    def get_stats(self, account_id: str) -> AccountRateStats:
        state = self._state(account_id)
        return AccountRateStats(
            last_call_at=state.last_call_at,
            total_calls=state.total_calls,
            failed_calls=state.failed_calls,
            waits_count=state.waits_count,
            total_wait_seconds=state.total_wait_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Delay window plus per-account counters for every account seen so far."""
        accounts = {}
        for account_id in list(self._stats):
            stats = self.get_stats(account_id)
            accounts[account_id] = {
                "total_calls": stats.total_calls,
                "failed_calls": stats.failed_calls,
                "waits_count": stats.waits_count,
                "total_wait_seconds": round(stats.total_wait_seconds, 3),
                "seconds_since_last_call": (
                    None if stats.last_call_at is None
                    else round(self.seconds_since_last_call(account_id), 3)
                ),
            }
        return {
            "min_delay_ms": self.min_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "accounts": accounts,
        }
