"""
Lookup provider interface.

A provider answers one question for one fully-qualified name: registered,
free, or inconclusive. Providers do not retry, rate-limit, or swallow
errors; network and protocol failures are raised as typed
:class:`~domain_dash.exceptions.ProviderError` subclasses and handled by
the wrapping layers.
"""

import time
from typing import Optional, Protocol, runtime_checkable

from .models import LookupResult

# In simulation mode names whose first label starts with this are free
SIMULATED_AVAILABLE_PREFIX = "available-"


@runtime_checkable
class Provider(Protocol):
    """Polymorphic lookup capability implemented once per protocol."""

    provider_id: str

    async def check(self, fqdn: str, timeout: Optional[float] = None) -> LookupResult:
        ...


def extension_of(fqdn: str) -> str:
    """Return the TLD of a name without the leading dot (``"com"``)."""
    return fqdn.rsplit(".", 1)[-1].lower() if "." in fqdn else ""


def elapsed_ms(start_time: float) -> float:
    """Calculate elapsed time in milliseconds since a perf_counter value."""
    return (time.perf_counter() - start_time) * 1000


def simulated_available(fqdn: str) -> bool:
    return fqdn.split(".", 1)[0].startswith(SIMULATED_AVAILABLE_PREFIX)
