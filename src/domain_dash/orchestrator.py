"""
Application wiring for the domain-dash system.

Builds every component exactly once from a :class:`SystemConfig` and
injects them explicitly: one activity log, one event bus, one rate limiter,
one retry executor and one health tracker shared by the engine and the
scheduler. No component is reachable through module-level state.
"""

from typing import Optional, TextIO

from .activity_log import ActivityLog
from .config import SystemConfig
from .dns_provider import DNSProvider
from .engine import ResolutionEngine
from .enums import ProviderId
from .events import EventBus
from .health import HealthTracker
from .provider import Provider
from .rate_limiter import RateLimiter
from .rdap_provider import RDAPProvider
from .retry_executor import RetryExecutor
from .scheduler import CycleScheduler
from .state_store import StateStore
from .whois_provider import WHOISProvider


def build_providers(config: SystemConfig) -> list[Provider]:
    """
    Instantiate the configured providers in priority order.

    Args:
        config: System configuration; ``engine.providers`` sets the order

    Returns:
        Provider instances, unknown IDs skipped
    """
    settings = config.providers
    factories = {
        ProviderId.RDAP.value: lambda: RDAPProvider(
            bootstrap_url=settings.rdap_bootstrap_url,
            tld_endpoints=settings.rdap_endpoints,
            timeout=settings.rdap_timeout_seconds,
            simulation_mode=config.simulation_mode,
        ),
        ProviderId.WHOIS.value: lambda: WHOISProvider(
            timeout=settings.whois_timeout_seconds,
            custom_servers=settings.whois_servers,
            simulation_mode=config.simulation_mode,
        ),
        ProviderId.DNS.value: lambda: DNSProvider(
            timeout=settings.dns_timeout_seconds,
            nameservers=settings.dns_nameservers or None,
            simulation_mode=config.simulation_mode,
        ),
    }
    return [factories[pid]() for pid in config.engine.providers if pid in factories]


class DomainDash:
    """
    Assembled application.

    Usage:
        async with DomainDash(config) as app:
            await app.engine.check_all()
    """

    def __init__(
        self,
        config: SystemConfig,
        storage: Optional[StateStore] = None,
        providers: Optional[list[Provider]] = None,
        logger: Optional[ActivityLog] = None,
        log_stream: Optional[TextIO] = None,
    ) -> None:
        """
        Build all components.

        Args:
            config: System configuration
            storage: Optional storage; defaults to the configured state file
            providers: Optional provider list overriding ``build_providers``
            logger: Optional activity log; built from config.logging if omitted
            log_stream: Stream for a logger built here (defaults to stderr)
        """
        self.config = config
        self.logger = logger or ActivityLog.from_config(config.logging, output_stream=log_stream)
        self.events = EventBus(logger=self.logger)
        self.storage = storage or StateStore(
            file_path=config.persistence.state_file_path,
            hmac_secret=config.persistence.hmac_secret,
        )
        self.providers = providers if providers is not None else build_providers(config)
        self.rate_limiter = RateLimiter(config.rate_limits, logger=self.logger)
        self.retry_executor = RetryExecutor(config.retry, logger=self.logger)
        self.health = HealthTracker(
            [p.provider_id for p in self.providers],
            config.health,
            events=self.events,
            logger=self.logger,
        )
        self.engine = ResolutionEngine(
            storage=self.storage,
            providers=self.providers,
            rate_limiter=self.rate_limiter,
            retry_executor=self.retry_executor,
            health=self.health,
            events=self.events,
            config=config.engine,
            logger=self.logger,
        )
        self.scheduler = CycleScheduler(
            engine=self.engine,
            storage=self.storage,
            events=self.events,
            logger=self.logger,
        )

    async def __aenter__(self) -> "DomainDash":
        self.health.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop background work and release provider resources."""
        await self.scheduler.shutdown()
        await self.health.stop()
        await self.engine.aclose()
        await self.events.drain()
