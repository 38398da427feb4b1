"""
Data models for the domain-dash resolution engine.

This module defines the data structures shared between the providers, the
resolution engine, the scheduler, and the storage collaborator.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import AvailabilityStatus


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LookupResult:
    """
    Outcome of one lookup for a single fully-qualified name.

    ``available`` is tri-state: True (free), False (registered) or None
    (no provider gave a definitive answer within budget). Results are
    immutable once returned; use :meth:`evolve` to derive a tagged copy.
    """

    available: Optional[bool]
    via: Optional[str] = None
    fqdn: str = ""
    extension: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso)
    duration_ms: float = 0.0
    error: Optional[str] = None
    warning: Optional[str] = None
    degraded: bool = False
    retryable: bool = False
    timed_out: bool = False
    details: Optional[dict] = None
    attempts: tuple["LookupResult", ...] = ()

    @property
    def is_definitive(self) -> bool:
        return self.available is not None

    @property
    def status(self) -> AvailabilityStatus:
        return AvailabilityStatus.from_available(self.available)

    def evolve(self, **changes: Any) -> "LookupResult":
        """Return a copy of this result with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = {
            "available": self.available,
            "via": self.via,
            "fqdn": self.fqdn,
            "extension": self.extension,
            "timestamp": self.timestamp,
            "duration_ms": round(self.duration_ms, 3),
            "error": self.error,
            "warning": self.warning,
            "degraded": self.degraded,
            "retryable": self.retryable,
            "timed_out": self.timed_out,
            "details": self.details,
        }
        if self.attempts:
            data["attempts"] = [attempt.to_dict() for attempt in self.attempts]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LookupResult":
        return cls(
            available=data.get("available"),
            via=data.get("via"),
            fqdn=data.get("fqdn", ""),
            extension=data.get("extension"),
            timestamp=data.get("timestamp") or utc_now_iso(),
            duration_ms=float(data.get("duration_ms", 0.0)),
            error=data.get("error"),
            warning=data.get("warning"),
            degraded=bool(data.get("degraded", False)),
            retryable=bool(data.get("retryable", False)),
            timed_out=bool(data.get("timed_out", False)),
            details=data.get("details"),
            attempts=tuple(cls.from_dict(a) for a in data.get("attempts", [])),
        )


@dataclass
class Domain:
    """A monitored base name together with the extensions checked for it."""

    name: str  # Normalized: trimmed, lowercase
    extensions: list[str] = field(default_factory=list)
    results: dict[str, LookupResult] = field(default_factory=dict)
    last_checked: Optional[str] = None
    added_at: str = field(default_factory=utc_now_iso)

    @property
    def available(self) -> Optional[bool]:
        """
        Aggregate availability across extensions.

        True when any extension is free, False when every extension is
        registered, None while any extension is unchecked or inconclusive.
        """
        verdicts = [
            self.results[ext].available if ext in self.results else None
            for ext in self.extensions
        ]
        if any(v is True for v in verdicts):
            return True
        if verdicts and all(v is False for v in verdicts):
            return False
        return None

    @property
    def available_extensions(self) -> list[str]:
        return [
            ext for ext in self.extensions
            if ext in self.results and self.results[ext].available is True
        ]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "extensions": list(self.extensions),
            "results": {ext: r.to_dict() for ext, r in self.results.items()},
            "last_checked": self.last_checked,
            "added_at": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Domain":
        return cls(
            name=data["name"],
            extensions=list(data.get("extensions", [])),
            results={
                ext: LookupResult.from_dict(r)
                for ext, r in data.get("results", {}).items()
            },
            last_checked=data.get("last_checked"),
            added_at=data.get("added_at") or utc_now_iso(),
        )


@dataclass
class ProviderHealth:
    """Rolling health state of a single provider."""

    consecutive_failures: int = 0
    last_success_at: Optional[float] = None  # Epoch seconds
    healthy: bool = True
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        last_success = None
        if self.last_success_at is not None:
            last_success = datetime.fromtimestamp(
                self.last_success_at, tz=timezone.utc
            ).isoformat()
        return {
            "failures": self.consecutive_failures,
            "last_success": last_success,
            "is_healthy": self.healthy,
        }


@dataclass
class SchedulerStatus:
    """Observable state of the cycle scheduler."""

    is_running: bool
    current_cycle: int
    domain_count: int
    interval_minutes: float
    is_active: bool = False

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "current_cycle": self.current_cycle,
            "domain_count": self.domain_count,
            "interval_minutes": self.interval_minutes,
            "is_active": self.is_active,
        }


@dataclass
class HistoryEntry:
    """A single entry in the storage audit trail."""

    timestamp: str
    action: str
    data: dict = field(default_factory=dict)
