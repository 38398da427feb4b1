"""
Retry Executor for the domain-dash resolution engine.

This module re-invokes fallible provider operations with exponential
backoff and jitter under a per-provider policy. Before every retry the
error is classified; anything that is not transient aborts immediately
without consuming the remaining attempts.

Transient errors:
- network-level failures (connection reset/refused, unreachable hosts,
  failure to resolve the provider's own endpoint, timeouts)
- HTTP-style 408, 429 and 5xx statuses
- provider-specific signatures (e.g. SERVFAIL for name resolution)
"""

import asyncio
import errno
import functools
import random
import socket
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .config import RetryConfig, RetryPolicy
from .enums import LogLevel, ProviderId
from .exceptions import DomainDashError

if TYPE_CHECKING:
    from .activity_log import ActivityLog

T = TypeVar("T")


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ETIMEDOUT,
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.EHOSTDOWN,
    errno.EHOSTUNREACH,
    errno.EPIPE,
})

# Lower-case fragments of error messages that mark a transient failure
TIMEOUT_SIGNATURES = ("timeout", "timed out")

PROVIDER_SIGNATURES: dict[str, tuple[str, ...]] = {
    ProviderId.RDAP.value: ("network", "fetch", "connection reset"),
    ProviderId.WHOIS.value: ("connection", "socket", "timeout"),
    ProviderId.DNS.value: ("servfail", "refused", "query timeout"),
}


class RetryExecutor:
    """
    Executes async operations with per-provider retry policies.

    One instance is built at startup and injected wherever provider calls
    are made.
    """

    COMPONENT = "retry"

    def __init__(
        self,
        config: RetryConfig,
        logger: Optional["ActivityLog"] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the retry executor.

        Args:
            config: Retry policies keyed by provider ID plus a default
            logger: Optional activity log for per-attempt notices
            rng: Random source for jitter, replaceable in tests
            sleep: Awaitable sleep, replaceable in tests
        """
        self._config = config
        self._logger = logger
        self._rng = rng or random.Random()
        self._sleep = sleep

    def policy_for(self, provider_id: str) -> RetryPolicy:
        """Return the policy for a provider, falling back to the default."""
        return self._config.per_provider.get(provider_id, self._config.default)

    def _calculate_delay(self, attempt: int, policy: RetryPolicy) -> float:
        """
        Calculate wait time with exponential backoff and jitter.

        delay(n) = min_delay * factor^n, multiplied by a random factor in
        [1, 2) when randomization is on, capped at max_delay.

        Args:
            attempt: The failed attempt number (0-indexed)
            policy: The provider's retry policy

        Returns:
            The delay in seconds before the next attempt
        """
        delay = policy.min_delay_seconds * (policy.factor ** attempt)
        if policy.randomize:
            delay *= 1.0 + self._rng.random()
        return min(delay, policy.max_delay_seconds)

    def is_retryable(self, error: BaseException, provider_id: str) -> bool:
        """
        Decide whether an error is transient for a given provider.

        Args:
            error: The exception raised by the operation
            provider_id: The provider that raised it

        Returns:
            True if the operation should be attempted again
        """
        if isinstance(error, DomainDashError):
            if error.retryable:
                return True
            if error.status_code in RETRYABLE_STATUS_CODES:
                return True
            if error.status_code is not None and error.status_code >= 500:
                return True
            # Typed, non-retryable provider errors are final
            return False

        if isinstance(error, (asyncio.TimeoutError, TimeoutError, socket.timeout)):
            return True

        if isinstance(error, socket.gaierror):
            # The provider's own endpoint could not be resolved
            return True

        if isinstance(error, (ConnectionError, httpx.TransportError)):
            return True

        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return status in RETRYABLE_STATUS_CODES or status >= 500

        if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
            return True

        message = str(error).lower()
        if any(signature in message for signature in TIMEOUT_SIGNATURES):
            return True

        return any(
            signature in message
            for signature in PROVIDER_SIGNATURES.get(provider_id, ())
        )

    async def execute(self, fn: Callable[[], Awaitable[T]], provider_id: str) -> T:
        """
        Execute an operation, retrying transient failures.

        Args:
            fn: Zero-argument coroutine function performing one attempt
            provider_id: Provider whose policy applies

        Returns:
            The result of the first successful attempt

        Raises:
            Exception: The last error once attempts are exhausted, or the
                first non-retryable error
        """
        policy = self.policy_for(provider_id)
        max_attempts = max(1, policy.max_attempts)
        attempt = 0

        while True:
            try:
                return await fn()
            except Exception as e:
                attempt += 1
                retryable = self.is_retryable(e, provider_id)
                final = not retryable or attempt >= max_attempts

                self._log_attempt(provider_id, attempt, max_attempts, e, retryable, final)

                if final:
                    raise

                await self._sleep(self._calculate_delay(attempt - 1, policy))

    def wrap(self, provider_id: str, fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Return a version of ``fn`` whose calls go through :meth:`execute`."""

        @functools.wraps(fn)
        async def retried(*args: Any, **kwargs: Any) -> T:
            return await self.execute(lambda: fn(*args, **kwargs), provider_id)

        return retried

    def _log_attempt(
        self,
        provider_id: str,
        attempt: int,
        max_attempts: int,
        error: BaseException,
        retryable: bool,
        final: bool,
    ) -> None:
        if not self._logger:
            return
        if not final:
            message = f"{provider_id} attempt {attempt}/{max_attempts} failed, retrying"
        elif retryable:
            message = f"{provider_id} failed after {attempt} attempts"
        else:
            message = f"{provider_id} failed with non-retryable error"
        self._logger.log_error(
            self.COMPONENT,
            message,
            error=error,
            level=LogLevel.WARN,
            additional_data={
                "provider": provider_id,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "retryable": retryable,
            },
        )
