"""
domain-dash - domain availability monitoring.

This package periodically determines whether monitored names are registered
or available by combining RDAP, WHOIS and DNS lookups into one tri-state
answer, under per-provider rate limits, retry policies, timeout budgets and
live health tracking.
"""

__version__ = "0.1.0"

from domain_dash.exceptions import (
    DomainDashError,
    ValidationError,
    ProviderError,
    NetworkError,
    ProtocolError,
    ProviderTimeoutError,
    UnknownProviderError,
    CycleAlreadyRunningError,
    PersistenceError,
    TamperingError,
)
from domain_dash.enums import (
    AvailabilityStatus,
    EventType,
    LogLevel,
    ProviderId,
)
from domain_dash.config import (
    RateLimitRule,
    RateLimitConfig,
    RetryPolicy,
    RetryConfig,
    HealthConfig,
    EngineConfig,
    ProviderConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
    create_default_config,
)
from domain_dash.models import (
    Domain,
    LookupResult,
    ProviderHealth,
    SchedulerStatus,
)
from domain_dash.domain_validator import (
    DomainValidator,
    build_fqdn,
    normalize_extension,
    normalize_name,
)
from domain_dash.events import Event, EventBus
from domain_dash.activity_log import ActivityLog
from domain_dash.provider import Provider
from domain_dash.rdap_provider import RDAPProvider
from domain_dash.whois_provider import WHOISProvider
from domain_dash.dns_provider import DNSProvider
from domain_dash.rate_limiter import RateLimiter, RateLimitStatus
from domain_dash.retry_executor import RetryExecutor
from domain_dash.health import HealthTracker
from domain_dash.state_store import DomainStorage, StateStore
from domain_dash.engine import ResolutionEngine
from domain_dash.scheduler import CycleScheduler
from domain_dash.orchestrator import DomainDash, build_providers

__all__ = [
    # Exceptions
    "DomainDashError",
    "ValidationError",
    "ProviderError",
    "NetworkError",
    "ProtocolError",
    "ProviderTimeoutError",
    "UnknownProviderError",
    "CycleAlreadyRunningError",
    "PersistenceError",
    "TamperingError",
    # Enums
    "AvailabilityStatus",
    "EventType",
    "LogLevel",
    "ProviderId",
    # Configuration
    "RateLimitRule",
    "RateLimitConfig",
    "RetryPolicy",
    "RetryConfig",
    "HealthConfig",
    "EngineConfig",
    "ProviderConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    "create_default_config",
    # Models
    "Domain",
    "LookupResult",
    "ProviderHealth",
    "SchedulerStatus",
    # Domain Validator
    "DomainValidator",
    "build_fqdn",
    "normalize_extension",
    "normalize_name",
    # Events and logging
    "Event",
    "EventBus",
    "ActivityLog",
    # Providers
    "Provider",
    "RDAPProvider",
    "WHOISProvider",
    "DNSProvider",
    # Resilience
    "RateLimiter",
    "RateLimitStatus",
    "RetryExecutor",
    "HealthTracker",
    # Storage
    "DomainStorage",
    "StateStore",
    # Engine and scheduling
    "ResolutionEngine",
    "CycleScheduler",
    "DomainDash",
    "build_providers",
]
