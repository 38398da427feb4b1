"""
Provider health tracking.

Each provider is either Healthy or Unhealthy:

- Healthy -> Unhealthy only when consecutive failures reach the threshold
  (emits ``provider_unhealthy`` once per transition). A provider that is
  simply not consulted for a while keeps its state.
- Unhealthy -> Healthy on the next success, or on a sweep when failures are
  below the threshold and the last success is within the stale bound
  (emits ``provider_recovered``). A stale provider stays Unhealthy.

There is no other way back to Healthy. State lives in memory only.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from .config import HealthConfig
from .enums import EventType
from .events import EventBus
from .models import ProviderHealth

if TYPE_CHECKING:
    from .activity_log import ActivityLog


class HealthTracker:
    """Tracks consecutive failures and last success per provider."""

    COMPONENT = "health"

    def __init__(
        self,
        provider_ids: Iterable[str],
        config: HealthConfig,
        events: Optional[EventBus] = None,
        logger: Optional["ActivityLog"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            provider_ids: Providers to track; all start Healthy
            config: Threshold, sweep interval and stale bound
            events: Channel for unhealthy/recovered notifications
            logger: Optional activity log
            clock: Wall clock in epoch seconds, replaceable in tests
        """
        self._config = config
        self._events = events
        self._logger = logger
        self._clock = clock
        self._started_at = clock()
        self._health: dict[str, ProviderHealth] = {
            provider_id: ProviderHealth() for provider_id in provider_ids
        }
        self._sweep_task: Optional[asyncio.Task] = None

    def _get(self, provider_id: str) -> ProviderHealth:
        health = self._health.get(provider_id)
        if health is None:
            health = self._health[provider_id] = ProviderHealth()
        return health

    def record_success(self, provider_id: str) -> None:
        """Reset the failure count; recover the provider if it was Unhealthy."""
        health = self._get(provider_id)
        health.consecutive_failures = 0
        health.last_success_at = self._clock()
        health.last_error = None
        if not health.healthy:
            self._mark_healthy(provider_id, health, "success")

    def record_failure(self, provider_id: str, error: Optional[BaseException] = None) -> None:
        """Count a failed attempt; demote the provider when the threshold is hit."""
        health = self._get(provider_id)
        health.consecutive_failures += 1
        if error is not None:
            health.last_error = str(error) or type(error).__name__
        if health.healthy and health.consecutive_failures >= self._config.unhealthy_threshold:
            self._mark_unhealthy(provider_id, health, "failure_threshold")

    def sweep(self) -> None:
        """
        Re-evaluate every provider.

        Demotes providers at or above the failure threshold and recovers
        Unhealthy ones that are below it and fresh. Staleness alone never
        demotes.
        """
        now = self._clock()
        for provider_id, health in self._health.items():
            reference = health.last_success_at
            if reference is None:
                reference = self._started_at
            fresh = now - reference <= self._config.stale_after_seconds
            below_threshold = health.consecutive_failures < self._config.unhealthy_threshold

            if health.healthy and not below_threshold:
                self._mark_unhealthy(provider_id, health, "failure_threshold")
            elif not health.healthy and fresh and below_threshold:
                self._mark_healthy(provider_id, health, "sweep")

    def is_healthy(self, provider_id: str) -> bool:
        return self._get(provider_id).healthy

    def get_healthy_providers(self, provider_ids: Iterable[str]) -> list[str]:
        """Return the healthy subset of ``provider_ids``, order preserved."""
        return [p for p in provider_ids if self._get(p).healthy]

    def get(self, provider_id: str) -> ProviderHealth:
        return self._get(provider_id)

    def snapshot(self) -> dict[str, dict]:
        """Return ``{provider: {failures, last_success, is_healthy}}``."""
        return {provider_id: health.to_dict() for provider_id, health in self._health.items()}

    def start(self) -> None:
        """Start the periodic sweep on the running loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Health sweep failed", error=e)

    def _mark_unhealthy(self, provider_id: str, health: ProviderHealth, reason: str) -> None:
        health.healthy = False
        if self._logger:
            self._logger.warn(
                self.COMPONENT,
                f"Provider {provider_id} marked unhealthy",
                {"provider": provider_id, "reason": reason, **health.to_dict()},
            )
        if self._events:
            self._events.emit(
                EventType.PROVIDER_UNHEALTHY, provider=provider_id, health=health.to_dict()
            )

    def _mark_healthy(self, provider_id: str, health: ProviderHealth, reason: str) -> None:
        health.healthy = True
        if self._logger:
            self._logger.info(
                self.COMPONENT,
                f"Provider {provider_id} recovered",
                {"provider": provider_id, "reason": reason, **health.to_dict()},
            )
        if self._events:
            self._events.emit(
                EventType.PROVIDER_RECOVERED, provider=provider_id, health=health.to_dict()
            )
