"""
Rate Limiter module for the domain-dash resolution engine.

This module provides per-provider rate limiting with:
- A concurrency cap (in-flight requests per provider)
- Minimum spacing between request starts
- A token reservoir refilled on a fixed interval up to its capacity
- FIFO admission: callers queue without busy-waiting and never fail
  because the reservoir is empty
"""

import asyncio
import functools
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from .config import RateLimitConfig, RateLimitRule
from .exceptions import UnknownProviderError

if TYPE_CHECKING:
    from .activity_log import ActivityLog

T = TypeVar("T")


@dataclass
class RateLimitStatus:
    """Observable state of one provider's limiter."""

    running: int
    queued: int
    tokens_available: int

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "queued": self.queued,
            "tokens_available": self.tokens_available,
        }


class _ProviderLimiter:
    """Gate for a single provider. All state changes happen on the event loop."""

    def __init__(self, provider_id: str, rule: RateLimitRule, clock: Callable[[], float]) -> None:
        self.provider_id = provider_id
        self.rule = rule
        self._clock = clock
        self._tokens = float(rule.reservoir)
        self._last_refill = clock()
        self._next_start = 0.0
        self._admission = asyncio.Lock()  # waiters are woken in FIFO order
        self._slots = asyncio.Semaphore(rule.max_concurrent)
        self.running = 0
        self.queued = 0
        self.depleted_count = 0

    @property
    def tokens(self) -> int:
        self._refill()
        return int(self._tokens)

    def _refill(self) -> None:
        interval = self.rule.refresh_interval_seconds
        if interval <= 0:
            return
        now = self._clock()
        periods = int((now - self._last_refill) // interval)
        if periods > 0:
            self._tokens = min(
                float(self.rule.reservoir),
                self._tokens + self.rule.refresh_amount * periods,
            )
            self._last_refill += periods * interval

    async def _take_token(self, on_depleted: Callable[[], None]) -> None:
        self._refill()
        if self._tokens < 1:
            self.depleted_count += 1
            on_depleted()
        while self._tokens < 1:
            wait = self._last_refill + self.rule.refresh_interval_seconds - self._clock()
            await asyncio.sleep(max(wait, 0.001))
            self._refill()
        self._tokens -= 1

    async def admit(self, on_depleted: Callable[[], None]) -> None:
        """Wait for a concurrency slot, a token and the spacing deadline."""
        self.queued += 1
        try:
            async with self._admission:
                await self._slots.acquire()
                try:
                    await self._take_token(on_depleted)
                    wait = self._next_start - self._clock()
                    if wait > 0:
                        await asyncio.sleep(wait)
                    self._next_start = self._clock() + self.rule.min_time_seconds
                except BaseException:
                    self._slots.release()
                    raise
        finally:
            self.queued -= 1
        self.running += 1

    def release(self) -> None:
        self.running -= 1
        self._slots.release()


class RateLimiter:
    """
    Per-provider rate limiter.

    One instance is built at startup and shared by every lookup; each
    provider's limiter is independent, so no lock spans providers.
    """

    COMPONENT = "rate_limiter"

    def __init__(
        self,
        config: RateLimitConfig,
        logger: Optional["ActivityLog"] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            config: Rate limit rules keyed by provider ID
            logger: Optional activity log for depletion warnings
            clock: Monotonic clock, replaceable in tests
        """
        self._config = config
        self._logger = logger
        self._limiters: dict[str, _ProviderLimiter] = {
            provider_id: _ProviderLimiter(provider_id, rule, clock)
            for provider_id, rule in config.per_provider.items()
        }

    @property
    def provider_ids(self) -> list[str]:
        return list(self._limiters)

    def _get(self, provider_id: str) -> _ProviderLimiter:
        try:
            return self._limiters[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    @asynccontextmanager
    async def acquire(self, provider_id: str) -> AsyncIterator[None]:
        """
        Hold a request slot for a provider.

        Usage:
            async with rate_limiter.acquire("whois"):
                response = await make_request()

        Raises:
            UnknownProviderError: If the provider has no configured rule
        """
        limiter = self._get(provider_id)
        await limiter.admit(lambda: self._warn_depleted(limiter))
        try:
            yield
        finally:
            limiter.release()

    async def run(self, provider_id: str, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Invoke ``fn`` once admitted for ``provider_id``."""
        async with self.acquire(provider_id):
            return await fn(*args, **kwargs)

    def wrap(self, provider_id: str, fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """
        Return a rate-limited version of ``fn`` with the same signature.

        Raises:
            UnknownProviderError: Immediately, if the provider is unknown
        """
        self._get(provider_id)

        @functools.wraps(fn)
        async def limited(*args: Any, **kwargs: Any) -> T:
            return await self.run(provider_id, fn, *args, **kwargs)

        return limited

    def get_status(self) -> dict[str, RateLimitStatus]:
        """Report running/queued/tokens for every provider."""
        return {
            provider_id: RateLimitStatus(
                running=limiter.running,
                queued=limiter.queued,
                tokens_available=limiter.tokens,
            )
            for provider_id, limiter in self._limiters.items()
        }

    def _warn_depleted(self, limiter: _ProviderLimiter) -> None:
        if self._logger:
            self._logger.warn(
                self.COMPONENT,
                f"Reservoir depleted for {limiter.provider_id}, queueing requests",
                {
                    "provider": limiter.provider_id,
                    "queued": limiter.queued,
                    "refresh_interval_seconds": limiter.rule.refresh_interval_seconds,
                },
            )
