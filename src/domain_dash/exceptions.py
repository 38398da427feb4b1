"""
Exception classes for the domain-dash resolution engine.

All exceptions inherit from DomainDashError and provide structured
error information with codes, messages, and optional details. Provider
errors additionally carry a ``retryable`` flag and, for HTTP-style
failures, the status code that produced them so the retry executor can
classify them without string matching.
"""

from typing import Optional


class DomainDashError(Exception):
    """Base exception for all domain-dash errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "status_code": self.status_code,
        }


class ValidationError(DomainDashError):
    """Raised when domain name validation fails."""

    pass


class ProviderError(DomainDashError):
    """Base class for failures signaled by a lookup provider."""

    pass


class NetworkError(ProviderError):
    """Raised when the provider cannot reach its endpoint."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = True,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(code, message, details, retryable, status_code)


class ProtocolError(ProviderError):
    """Raised on protocol-level failures (server errors, malformed responses)."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider does not answer within its own deadline."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = True,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(code, message, details, retryable, status_code)


class UnknownProviderError(DomainDashError):
    """Raised when a provider ID is not registered (programmer error)."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(
            code="unknown_provider",
            message=f"Unknown provider: {provider_id}",
            details={"provider": provider_id},
        )


class CycleAlreadyRunningError(DomainDashError):
    """Raised when a manual check is triggered while a cycle is running."""

    def __init__(self, cycle: int) -> None:
        super().__init__(
            code="cycle_running",
            message="A check cycle is already running",
            details={"current_cycle": cycle},
        )


class PersistenceError(DomainDashError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass
