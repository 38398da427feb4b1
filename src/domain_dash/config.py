"""
Configuration dataclasses for the domain-dash resolution engine.

This module defines all configuration structures used throughout the system:
per-provider rate limits and retry policies, health tracking, engine
timeouts, provider endpoints, persistence, and logging. Defaults mirror the
production tuning of each provider. Environment overrides are read with
python-dotenv so a local ``.env`` file works the same as real variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .enums import ProviderId


DEFAULT_EXTENSIONS = [".com", ".org", ".net", ".co", ".io", ".dev", ".app", ".ai"]
DEFAULT_CHECK_INTERVAL_MINUTES = 5
DEFAULT_PROVIDER_ORDER = [ProviderId.RDAP.value, ProviderId.WHOIS.value, ProviderId.DNS.value]


@dataclass
class RateLimitRule:
    """Token bucket and concurrency gate for a single provider."""

    max_concurrent: int
    min_time_seconds: float
    reservoir: int
    refresh_amount: int
    refresh_interval_seconds: float = 60.0


def _default_rate_limits() -> dict[str, RateLimitRule]:
    return {
        ProviderId.RDAP.value: RateLimitRule(
            max_concurrent=2, min_time_seconds=0.25, reservoir=20, refresh_amount=20,
        ),
        ProviderId.WHOIS.value: RateLimitRule(
            max_concurrent=1, min_time_seconds=1.0, reservoir=10, refresh_amount=10,
        ),
        ProviderId.DNS.value: RateLimitRule(
            max_concurrent=5, min_time_seconds=0.1, reservoir=50, refresh_amount=50,
        ),
    }


@dataclass
class RateLimitConfig:
    """Rate limiting configuration, keyed by provider ID."""

    per_provider: dict[str, RateLimitRule] = field(default_factory=_default_rate_limits)


@dataclass
class RetryPolicy:
    """Exponential backoff policy for a single provider."""

    max_attempts: int = 4
    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    factor: float = 2.0
    randomize: bool = True


def _default_retry_policies() -> dict[str, RetryPolicy]:
    return {
        ProviderId.RDAP.value: RetryPolicy(
            max_attempts=3, min_delay_seconds=0.5, max_delay_seconds=5.0,
        ),
        ProviderId.WHOIS.value: RetryPolicy(
            max_attempts=4, min_delay_seconds=2.0, max_delay_seconds=10.0,
        ),
        ProviderId.DNS.value: RetryPolicy(
            max_attempts=3, min_delay_seconds=0.25, max_delay_seconds=2.0,
        ),
    }


@dataclass
class RetryConfig:
    """Retry behavior configuration, keyed by provider ID."""

    default: RetryPolicy = field(default_factory=RetryPolicy)
    per_provider: dict[str, RetryPolicy] = field(default_factory=_default_retry_policies)


@dataclass
class HealthConfig:
    """Provider health tracking configuration."""

    unhealthy_threshold: int = 5
    sweep_interval_seconds: float = 300.0
    stale_after_seconds: float = 3600.0


@dataclass
class EngineConfig:
    """Resolution engine configuration."""

    providers: list[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))
    concurrency: int = 4
    provider_timeout_seconds: float = 15.0
    check_timeout_seconds: float = 45.0
    graceful_degradation: bool = True


@dataclass
class ProviderConfig:
    """Endpoints and socket timeouts used by the concrete providers."""

    rdap_bootstrap_url: str = "https://rdap.org"
    rdap_endpoints: dict[str, str] = field(default_factory=dict)
    whois_servers: dict[str, str] = field(default_factory=dict)
    rdap_timeout_seconds: float = 10.0
    whois_timeout_seconds: float = 10.0
    dns_timeout_seconds: float = 5.0
    dns_nameservers: list[str] = field(default_factory=list)


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    state_file_path: Optional[Path]
    hmac_secret: str


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'
    buffer_size: int = 500


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    engine: EngineConfig
    rate_limits: RateLimitConfig
    retry: RetryConfig
    health: HealthConfig
    providers: ProviderConfig
    persistence: PersistenceConfig
    logging: LoggingConfig
    simulation_mode: bool = False


def default_state_file() -> Path:
    return Path.home() / ".domain_dash" / "state.json"


def create_default_config(
    simulation_mode: bool = False,
    state_file: Optional[Path] = None,
    hmac_secret: str = "default-secret-change-me",
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        simulation_mode: Enable simulation mode (no real network requests)
        state_file: Path to state file for persistence
        hmac_secret: Secret for HMAC protection

    Returns:
        SystemConfig with default settings
    """
    return SystemConfig(
        engine=EngineConfig(),
        rate_limits=RateLimitConfig(),
        retry=RetryConfig(),
        health=HealthConfig(),
        providers=ProviderConfig(),
        persistence=PersistenceConfig(
            state_file_path=state_file or default_state_file(),
            hmac_secret=hmac_secret,
        ),
        logging=LoggingConfig(),
        simulation_mode=simulation_mode,
    )


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def apply_env_overrides(config: SystemConfig, dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Apply ``DOMAIN_DASH_*`` environment overrides to a configuration.

    A ``.env`` file is loaded first; variables already present in the
    environment take precedence over it.

    Args:
        config: Configuration to update in place
        dotenv_path: Optional explicit path of the .env file

    Returns:
        The same configuration object, for chaining
    """
    load_dotenv(dotenv_path)

    engine = config.engine
    engine.concurrency = max(1, _int_env("DOMAIN_DASH_CONCURRENCY", engine.concurrency))
    engine.provider_timeout_seconds = _float_env(
        "DOMAIN_DASH_PROVIDER_TIMEOUT", engine.provider_timeout_seconds
    )
    engine.check_timeout_seconds = _float_env(
        "DOMAIN_DASH_CHECK_TIMEOUT", engine.check_timeout_seconds
    )

    state_file = os.getenv("DOMAIN_DASH_STATE_FILE", "").strip()
    if state_file:
        config.persistence.state_file_path = Path(state_file)

    secret = os.getenv("DOMAIN_DASH_HMAC_SECRET", "").strip()
    if secret:
        config.persistence.hmac_secret = secret

    level = os.getenv("DOMAIN_DASH_LOG_LEVEL", "").strip().lower()
    if level:
        config.logging.level = level

    if os.getenv("DOMAIN_DASH_DRY_RUN", "0") == "1":
        config.simulation_mode = True

    return config
