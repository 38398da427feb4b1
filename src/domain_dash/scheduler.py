"""
Cycle scheduler for the domain-dash system.

Drives ``ResolutionEngine.check_all`` on a fixed interval. At most one
cycle runs at a time: a tick that fires while a cycle is still running is
skipped (``cycle_skipped`` event) rather than queued or run concurrently,
and a manual trigger during a running cycle is refused.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Union

from .config import DEFAULT_CHECK_INTERVAL_MINUTES
from .engine import ResolutionEngine
from .enums import EventType
from .events import EventBus
from .exceptions import CycleAlreadyRunningError
from .models import Domain, SchedulerStatus
from .state_store import DomainStorage

if TYPE_CHECKING:
    from .activity_log import ActivityLog


INTERVAL_SETTING = "checkInterval"
SKIP_REASON_RUNNING = "already running"


class CycleScheduler:
    """
    Periodic, non-overlapping check cycles.

    ``start`` must be called from within a running event loop.
    """

    COMPONENT = "scheduler"
    MIN_INTERVAL_MINUTES = 1

    def __init__(
        self,
        engine: ResolutionEngine,
        storage: DomainStorage,
        events: EventBus,
        logger: Optional["ActivityLog"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            engine: Engine whose ``check_all`` runs each cycle
            storage: Storage used for the domain count and the interval setting
            events: Channel for ``cycle_skipped`` notifications
            logger: Optional activity log
            sleep: Awaitable sleep, replaceable in tests
        """
        self._engine = engine
        self._storage = storage
        self._events = events
        self._logger = logger
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._interval_minutes: Optional[float] = None
        self._cycle = 0

    @property
    def is_running(self) -> bool:
        """True while a cycle is in progress."""
        return self._cycle_task is not None and not self._cycle_task.done()

    @property
    def is_active(self) -> bool:
        """True while the periodic timer is scheduled."""
        return self._timer is not None and not self._timer.done()

    @property
    def current_cycle(self) -> int:
        return self._cycle

    def _resolve_interval(self, interval_minutes: Optional[float]) -> float:
        value = interval_minutes
        if value is None:
            value = self._storage.get_setting(INTERVAL_SETTING, DEFAULT_CHECK_INTERVAL_MINUTES)
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = float(DEFAULT_CHECK_INTERVAL_MINUTES)
        return max(float(self.MIN_INTERVAL_MINUTES), value)

    def start(self, interval_minutes: Optional[float] = None) -> None:
        """
        Start periodic cycles, replacing any existing timer.

        One cycle fires immediately, then one every interval.

        Args:
            interval_minutes: Interval, defaults to the ``checkInterval``
                setting; values below one minute are raised to one minute
        """
        self._cancel_timer()
        self._interval_minutes = self._resolve_interval(interval_minutes)
        self._timer = asyncio.get_running_loop().create_task(
            self._timer_loop(self._interval_minutes * 60)
        )
        if self._logger:
            self._logger.info(self.COMPONENT, "Scheduler started", {
                "interval_minutes": self._interval_minutes,
            })

    def stop(self) -> None:
        """Cancel the timer. A cycle already in progress runs to completion."""
        if self._cancel_timer() and self._logger:
            self._logger.info(self.COMPONENT, "Scheduler stopped", {"cycles": self._cycle})

    async def trigger_check(
        self, domains: Optional[Iterable[Union[Domain, str]]] = None
    ) -> list[Domain]:
        """
        Run one cycle now and wait for it.

        Raises:
            CycleAlreadyRunningError: If a cycle is already running
        """
        if self.is_running:
            raise CycleAlreadyRunningError(self._cycle)
        return await self._launch(domains)

    def set_interval(self, interval_minutes: float) -> float:
        """
        Change the interval, persist it, and restart the timer if active.

        Returns:
            The interval actually applied after clamping
        """
        minutes = self._resolve_interval(interval_minutes)
        stored: Union[int, float] = int(minutes) if minutes.is_integer() else minutes
        self._storage.set_setting(INTERVAL_SETTING, stored)
        if self.is_active:
            self.start(minutes)
        else:
            self._interval_minutes = minutes
        return minutes

    def get_status(self) -> SchedulerStatus:
        interval = self._interval_minutes
        if interval is None:
            interval = self._resolve_interval(None)
        return SchedulerStatus(
            is_running=self.is_running,
            current_cycle=self._cycle,
            domain_count=len(self._storage.get_domains()),
            interval_minutes=interval,
            is_active=self.is_active,
        )

    async def wait_idle(self) -> None:
        """Wait for the cycle in progress, if any, to finish."""
        task = self._cycle_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop the timer and let the current cycle finish."""
        self.stop()
        await self.wait_idle()

    async def _timer_loop(self, interval_seconds: float) -> None:
        while True:
            self._tick()
            await self._sleep(interval_seconds)

    def _tick(self) -> bool:
        """
        Handle one timer tick.

        Returns:
            True if a cycle was launched, False if it was skipped
        """
        if self.is_running:
            if self._logger:
                self._logger.warn(self.COMPONENT, "Cycle skipped, previous cycle still running", {
                    "current_cycle": self._cycle,
                })
            self._events.emit(
                EventType.CYCLE_SKIPPED,
                reason=SKIP_REASON_RUNNING,
                current_cycle=self._cycle,
            )
            return False
        self._launch(None)
        return True

    def _launch(self, domains: Optional[Iterable[Union[Domain, str]]]) -> "asyncio.Task[list[Domain]]":
        self._cycle += 1
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._engine.check_all(domains)
        )
        return self._cycle_task

    def _cancel_timer(self) -> bool:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            return True
        return False
