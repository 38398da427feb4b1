"""
Resolution engine for the domain-dash system.

The engine turns several unreliable, rate-limited providers into one
tri-state answer per name and extension, and fans checks out over all
monitored domains under a single global concurrency bound.

Per extension (``check_one``):
- providers are consulted sequentially in priority order, restricted to
  healthy ones when graceful degradation is on (all of them if none is)
- every provider call goes through the rate limiter and the retry executor
  and, once admitted by the rate limiter, is raced against
  ``provider_timeout_seconds``
- the first definitive answer wins; otherwise the most informative
  inconclusive result is kept
- the whole lookup is raced against ``check_timeout_seconds``

Deadlines never cancel the underlying call; a late result is not used for
the answer, but it still settles the provider's health.
Nothing raised by a provider escapes ``check_one``, ``check_domain`` or
``check_all``: failures become ``LookupResult.error`` / ``warning`` data.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional, Sequence, Union

from .config import EngineConfig
from .domain_validator import build_fqdn, normalize_extension, normalize_name, to_ascii
from .enums import EventType
from .events import EventBus
from .exceptions import DomainDashError, ProviderTimeoutError, UnknownProviderError
from .health import HealthTracker
from .models import Domain, LookupResult, utc_now_iso
from .provider import Provider, elapsed_ms
from .rate_limiter import RateLimiter
from .retry_executor import RetryExecutor
from .state_store import DomainStorage

if TYPE_CHECKING:
    from .activity_log import ActivityLog


CHECK_TIMEOUT_ERROR = "check_timeout"
NO_PROVIDERS_ERROR = "no_providers"


def prefer(best: Optional[LookupResult], candidate: LookupResult) -> LookupResult:
    """
    Choose between the kept inconclusive result and a newer one.

    The newer result replaces the kept one unless it carries an error while
    the kept one does not, so an error-free answer is never displaced by a
    failure, and among equally informative results the last attempted wins.
    """
    if best is None or candidate.error is None or best.error is not None:
        return candidate
    return best


@dataclass
class _CheckProgress:
    """Mutable state of one ``check_one`` call, shared with its chain task."""

    best: Optional[LookupResult] = None
    attempts: list[LookupResult] = field(default_factory=list)
    degraded: bool = False
    abandoned: bool = False

    def record(self, result: LookupResult) -> None:
        self.attempts.append(result)
        if result.is_definitive:
            self.best = result
        else:
            self.best = prefer(self.best, result)


class _Attempt:
    """One provider consultation; its deadline starts once it is admitted."""

    def __init__(self) -> None:
        self.admitted = asyncio.Event()


class ResolutionEngine:
    """
    Orchestrates providers into availability answers.

    All collaborators are injected; one engine owns no global state.
    """

    COMPONENT = "engine"

    def __init__(
        self,
        storage: DomainStorage,
        providers: Sequence[Provider],
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        health: HealthTracker,
        events: EventBus,
        config: Optional[EngineConfig] = None,
        logger: Optional["ActivityLog"] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            storage: Storage collaborator for domains and results
            providers: Provider instances; priority comes from config.providers
            rate_limiter: Shared per-provider rate limiter
            retry_executor: Shared per-provider retry executor
            health: Health tracker covering every provider
            events: Channel for change and cycle events
            config: Concurrency, timeouts and degradation policy
            logger: Optional activity log

        Raises:
            UnknownProviderError: If a provider has no rate limit rule
        """
        self._storage = storage
        self._rate_limiter = rate_limiter
        self._retry = retry_executor
        self._health = health
        self._events = events
        self._config = config or EngineConfig()
        self._logger = logger

        self._providers: dict[str, Provider] = {p.provider_id: p for p in providers}
        configured = [pid for pid in self._config.providers if pid in self._providers]
        self._order = configured or list(self._providers)

        limited = set(rate_limiter.provider_ids)
        for provider_id in self._order:
            if provider_id not in limited:
                raise UnknownProviderError(provider_id)

        self._slots = asyncio.Semaphore(max(1, self._config.concurrency))
        self._background: set[asyncio.Task] = set()

    @property
    def provider_order(self) -> list[str]:
        return list(self._order)

    # Single lookup

    async def check_one(self, name: str, extension: str) -> LookupResult:
        """
        Determine availability of one name/extension pair.

        Args:
            name: Base name, normalized here
            extension: Extension with or without leading dot

        Returns:
            A fresh LookupResult; never raises
        """
        fqdn = build_fqdn(name, extension)
        ext = normalize_extension(extension)

        async with self._slots:
            start_time = time.perf_counter()
            try:
                wire_name = to_ascii(fqdn)
            except DomainDashError as e:
                return LookupResult(
                    available=None, fqdn=fqdn, extension=ext,
                    duration_ms=elapsed_ms(start_time), error=e.message,
                )

            progress = _CheckProgress()
            chain = asyncio.get_running_loop().create_task(self._run_chain(wire_name, progress))
            done, _ = await asyncio.wait({chain}, timeout=self._config.check_timeout_seconds)

            if chain in done:
                return self._finalize(progress, fqdn, ext, start_time, timed_out=False)

            progress.abandoned = True
            self._keep_in_background(chain)
            self._log_warn(f"Check for {fqdn} exceeded its deadline", {
                "fqdn": fqdn,
                "check_timeout_seconds": self._config.check_timeout_seconds,
                "attempted": [r.via for r in progress.attempts],
            })
            return self._finalize(progress, fqdn, ext, start_time, timed_out=True)

    def _provider_sequence(self) -> tuple[list[str], bool]:
        """Return (providers to consult, whether the set was degraded)."""
        if not self._config.graceful_degradation:
            return list(self._order), False

        healthy = self._health.get_healthy_providers(self._order)
        if not healthy:
            self._log_warn("No healthy providers, falling back to all providers", {
                "providers": self._order,
            })
            return list(self._order), True
        return healthy, len(healthy) < len(self._order)

    async def _run_chain(self, wire_name: str, progress: _CheckProgress) -> None:
        sequence, degraded = self._provider_sequence()
        progress.degraded = degraded

        for provider_id in sequence:
            if progress.abandoned:
                break
            result = await self._consult_with_deadline(provider_id, wire_name)
            progress.record(result)
            if result.is_definitive:
                break

    async def _consult_with_deadline(self, provider_id: str, wire_name: str) -> LookupResult:
        """
        Race one rate-limited, retried provider call against its deadline.

        The deadline starts when the rate limiter admits the call, so time
        spent queued behind the provider's own limits is not charged to it
        (the check deadline still bounds the wait). On expiry the call keeps
        running and settles health from its real outcome.
        """
        attempt = _Attempt()
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._consult(provider_id, wire_name, attempt))
        admitted = loop.create_task(attempt.admitted.wait())
        try:
            try:
                await asyncio.wait({task, admitted}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                admitted.cancel()
            start_time = time.perf_counter()
            done, _ = await asyncio.wait({task}, timeout=self._config.provider_timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        self._keep_in_background(task)
        return LookupResult(
            available=None,
            via=provider_id,
            fqdn=wire_name,
            duration_ms=elapsed_ms(start_time),
            error=f"{provider_id}_timeout",
            retryable=True,
        )

    async def _consult(self, provider_id: str, wire_name: str, attempt: _Attempt) -> LookupResult:
        provider = self._providers[provider_id]
        start_time = time.perf_counter()

        async def single_attempt() -> LookupResult:
            async with self._rate_limiter.acquire(provider_id):
                attempt.admitted.set()
                return await provider.check(wire_name, self._config.provider_timeout_seconds)

        try:
            result = await self._retry.execute(single_attempt, provider_id)
        except Exception as e:
            self._health.record_failure(provider_id, e)
            return self._error_result(provider_id, wire_name, e, elapsed_ms(start_time))

        self._health.record_success(provider_id)
        if result.via != provider_id:
            result = result.evolve(via=provider_id)
        return result

    def _error_result(
        self, provider_id: str, wire_name: str, error: Exception, duration_ms: float
    ) -> LookupResult:
        if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError)):
            message = f"{provider_id}_timeout"
        elif isinstance(error, DomainDashError):
            message = error.message
        else:
            message = str(error) or type(error).__name__

        details = {"error_type": type(error).__name__}
        code = getattr(error, "code", None)
        if isinstance(code, str):
            details["error_code"] = code

        return LookupResult(
            available=None,
            via=provider_id,
            fqdn=wire_name,
            duration_ms=duration_ms,
            error=message,
            retryable=self._retry.is_retryable(error, provider_id),
            details=details,
        )

    def _finalize(
        self,
        progress: _CheckProgress,
        fqdn: str,
        extension: str,
        start_time: float,
        timed_out: bool,
    ) -> LookupResult:
        attempts = tuple(progress.attempts)
        best = progress.best
        if best is None:
            best = LookupResult(
                available=None,
                error=CHECK_TIMEOUT_ERROR if timed_out else NO_PROVIDERS_ERROR,
                retryable=timed_out,
            )
        changes = {
            "fqdn": fqdn,
            "extension": extension,
            "timestamp": utc_now_iso(),
            "duration_ms": elapsed_ms(start_time),
            "degraded": progress.degraded or best.degraded,
            "attempts": attempts if len(attempts) > 1 else (),
        }
        if timed_out:
            changes.update(timed_out=True, error=CHECK_TIMEOUT_ERROR, retryable=True)
        return best.evolve(**changes)

    def _keep_in_background(self, task: asyncio.Task) -> None:
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled():
                t.exception()

        task.add_done_callback(_done)

    # Domains and cycles

    async def check_domain(self, domain: Union[Domain, str]) -> Optional[Domain]:
        """
        Check every extension of a domain and store the results.

        Emits ``available`` for each extension that became free, ``updated``
        when any extension changed, ``domain_check_errors`` when results
        carry errors, and ``domain_check_failed`` on internal failure.

        Returns:
            The stored domain after the update, or None on failure
        """
        name = domain.name if isinstance(domain, Domain) else normalize_name(domain)

        try:
            current = self._storage.get_domain(name)
            if current is None:
                raise LookupError(f"Domain not found: {name}")

            results = await asyncio.gather(
                *(self.check_one(name, ext) for ext in current.extensions)
            )

            changed = []
            errors = {}
            for ext, result in zip(current.extensions, results):
                stored, previous = self._storage.exchange_extension_status(name, ext, result)
                if not stored:
                    continue

                before_available = previous.available if previous else None
                if before_available != result.available:
                    changed.append(ext)
                    if result.available is True:
                        self._events.emit(
                            EventType.AVAILABLE,
                            domain=name,
                            extension=ext,
                            fqdn=result.fqdn,
                            via=result.via,
                        )
                if result.error:
                    errors[ext] = result.to_dict()

            if changed:
                self._events.emit(EventType.UPDATED, domain=name, extensions=changed)
            if errors:
                self._events.emit(EventType.DOMAIN_CHECK_ERRORS, domain=name, results=errors)

            return self._storage.get_domain(name)

        except Exception as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, f"Check failed for {name}", error=e)
            self._events.emit(EventType.DOMAIN_CHECK_FAILED, domain=name, error=str(e))
            return None

    async def check_all(
        self, domains: Optional[Iterable[Union[Domain, str]]] = None
    ) -> list[Domain]:
        """
        Check a batch of domains, by default every stored domain.

        Emits ``cycle_started`` and ``cycle_complete`` around the batch (only
        ``cycle_complete`` for an empty batch) and ``cycle_failed`` if the
        batch itself fails. A failing domain never aborts the batch.

        Returns:
            The updated domains that were checked successfully
        """
        start_time = time.perf_counter()
        try:
            batch = list(self._storage.get_domains() if domains is None else domains)

            if batch:
                self._events.emit(
                    EventType.CYCLE_STARTED, domain_count=len(batch), timestamp=utc_now_iso()
                )
                self._log_info("Cycle started", {"domain_count": len(batch)})

            checked = await asyncio.gather(*(self.check_domain(d) for d in batch))

            duration = elapsed_ms(start_time)
            self._events.emit(
                EventType.CYCLE_COMPLETE,
                timestamp=utc_now_iso(),
                duration_ms=duration,
                domain_count=len(batch),
            )
            self._log_info("Cycle complete", {
                "domain_count": len(batch),
                "duration_ms": round(duration, 1),
            })
            return [d for d in checked if d is not None]

        except Exception as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Cycle failed", error=e)
            self._events.emit(EventType.CYCLE_FAILED, error=str(e))
            return []

    # Observability

    def get_provider_health(self) -> dict[str, dict]:
        """Return ``{provider: {failures, last_success, is_healthy}}``."""
        snapshot = self._health.snapshot()
        return {pid: snapshot[pid] for pid in self._order if pid in snapshot}

    def get_rate_limit_status(self) -> dict[str, dict]:
        return {pid: status.to_dict() for pid, status in self._rate_limiter.get_status().items()}

    async def test_provider(self, provider_id: str, test_domain: str = "google.com") -> LookupResult:
        """
        Probe one provider with a known registered name.

        Raises:
            UnknownProviderError: If the provider is not registered
        """
        if provider_id not in self._providers:
            raise UnknownProviderError(provider_id)
        return await self._consult_with_deadline(provider_id, to_ascii(normalize_name(test_domain)))

    async def aclose(self) -> None:
        """Cancel abandoned calls and release provider resources."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for provider in self._providers.values():
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.info(self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.warn(self.COMPONENT, message, data)
