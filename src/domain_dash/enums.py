"""
Enumeration types for the domain-dash resolution engine.

These enums provide type-safe constants for provider identifiers, event
types, status values, and configuration options throughout the system.
"""

from enum import Enum
from typing import Optional


class ProviderId(str, Enum):
    """Identifiers of the built-in lookup providers, in default priority order."""

    RDAP = "rdap"
    WHOIS = "whois"
    DNS = "dns"


class AvailabilityStatus(Enum):
    """Display form of the tri-state availability of a domain extension."""

    AVAILABLE = "available"
    TAKEN = "taken"
    UNKNOWN = "unknown"

    @classmethod
    def from_available(cls, available: Optional[bool]) -> "AvailabilityStatus":
        if available is True:
            return cls.AVAILABLE
        if available is False:
            return cls.TAKEN
        return cls.UNKNOWN


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class EventType(Enum):
    """Events published by the engine, health tracker and scheduler."""

    CYCLE_STARTED = "cycle_started"
    CYCLE_COMPLETE = "cycle_complete"
    CYCLE_FAILED = "cycle_failed"
    CYCLE_SKIPPED = "cycle_skipped"
    UPDATED = "updated"
    AVAILABLE = "available"
    PROVIDER_UNHEALTHY = "provider_unhealthy"
    PROVIDER_RECOVERED = "provider_recovered"
    DOMAIN_CHECK_ERRORS = "domain_check_errors"
    DOMAIN_CHECK_FAILED = "domain_check_failed"


class DomainValidationErrorCode(Enum):
    """Error codes for domain validation failures."""

    FORBIDDEN_CHARS = "forbidden_chars"
    INVALID_LABEL = "invalid_label"
    IDNA_ERROR = "idna_error"
    EMPTY_INPUT = "empty_input"


class ProviderErrorCode(Enum):
    """Error codes attached to provider failures."""

    NETWORK_ERROR = "network_error"
    TLS_ERROR = "tls_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNEXPECTED_STATUS = "unexpected_status"
    SERVFAIL = "servfail"
    NO_SERVER = "no_server"


class LookupWarning(Enum):
    """Warnings attached to inconclusive provider answers."""

    CONFLICTING_SIGNALS = "conflicting_signals"
    NO_SIGNALS = "no_signals"
    NO_DNS_RECORDS = "no_dns_records"
