"""
RDAP provider for domain availability checking.

This module provides an async RDAP provider with TLS enforcement and
parsing of defined response fields only. Registry endpoints can be set per
TLD; anything else goes through the rdap.org bootstrap redirector.

Classification:
- HTTP 404: the registry has no such object, the name is free
- HTTP 200 with a domain object: registered
- HTTP 408/429/5xx: retryable protocol error
- anything else, or an unparseable body: non-retryable protocol error
"""

import time
from dataclasses import asdict, dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from .enums import ProviderErrorCode, ProviderId
from .exceptions import NetworkError, ProtocolError, ProviderTimeoutError
from .models import LookupResult
from .provider import elapsed_ms, extension_of, simulated_available


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class RDAPEvent:
    """A single RDAP event (e.g., registration, expiration)."""

    event_action: str
    event_date: str


@dataclass
class RDAPParsedFields:
    """
    Parsed RDAP response fields.

    Only defined fields are extracted; all others are ignored.
    """

    domain_name: str
    status: list[str]
    events: list[RDAPEvent]
    nameservers: list[str]


class RDAPProvider:
    """
    Registry protocol lookup over HTTPS.

    The underlying httpx client is created lazily and reused across checks;
    call :meth:`aclose` (or use the provider as an async context manager)
    to release it.
    """

    provider_id = ProviderId.RDAP.value

    def __init__(
        self,
        bootstrap_url: str = "https://rdap.org",
        tld_endpoints: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        simulation_mode: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the RDAP provider.

        Args:
            bootstrap_url: Fallback RDAP base URL for TLDs without an endpoint
            tld_endpoints: Mapping of TLD to registry RDAP base URL
            timeout: Request timeout in seconds
            simulation_mode: If True, no real network requests are made
            client: Optional preconfigured client (used by tests)
        """
        self._bootstrap_url = bootstrap_url
        self._tld_endpoints = {
            k.lower().lstrip("."): v for k, v in (tld_endpoints or {}).items()
        }
        self._timeout = timeout
        self._simulation_mode = simulation_mode
        self._client = client

    async def __aenter__(self) -> "RDAPProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def get_endpoint_for_tld(self, tld: str) -> str:
        """Return the RDAP base URL used for a TLD."""
        return self._tld_endpoints.get(tld.lower().lstrip("."), self._bootstrap_url)

    def _validate_endpoint_url(self, endpoint: str) -> None:
        """
        Validate that the endpoint uses HTTPS (TLS).

        Raises:
            ProtocolError: If the endpoint does not use HTTPS
        """
        parsed = urlparse(endpoint)
        if parsed.scheme.lower() != "https":
            raise ProtocolError(
                code=ProviderErrorCode.TLS_ERROR.value,
                message=f"RDAP endpoint must use HTTPS: {endpoint}",
                details={"endpoint": endpoint, "scheme": parsed.scheme},
            )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,  # TLS certificate verification enforced
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={"Accept": "application/rdap+json, application/json"},
            )
        return self._client

    async def check(self, fqdn: str, timeout: Optional[float] = None) -> LookupResult:
        """
        Query RDAP for a fully-qualified name.

        Args:
            fqdn: Name to look up, already IDNA-encoded
            timeout: Optional per-request timeout overriding the default

        Returns:
            LookupResult with ``available`` True (404) or False (domain object)

        Raises:
            ProtocolError: On TLS violations, unexpected statuses or bad bodies
            ProviderTimeoutError: If the request times out
            NetworkError: If the endpoint cannot be reached
        """
        start_time = time.perf_counter()
        endpoint = self.get_endpoint_for_tld(extension_of(fqdn))
        self._validate_endpoint_url(endpoint)

        if self._simulation_mode:
            return self._create_simulation_result(fqdn, start_time)

        rdap_url = f"{endpoint.rstrip('/')}/domain/{fqdn}"

        try:
            response = await self._get_client().get(
                rdap_url,
                timeout=httpx.Timeout(timeout or self._timeout),
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                code=ProviderErrorCode.TIMEOUT.value,
                message=f"RDAP request timed out: {e}",
                details={"url": rdap_url},
            )
        except httpx.TransportError as e:
            error_msg = str(e)
            code = ProviderErrorCode.NETWORK_ERROR
            if "ssl" in error_msg.lower() or "certificate" in error_msg.lower():
                code = ProviderErrorCode.TLS_ERROR
            raise NetworkError(
                code=code.value,
                message=f"RDAP connection error: {error_msg or type(e).__name__}",
                details={"url": rdap_url},
            )

        if response.status_code == 404:
            return LookupResult(
                available=True,
                via=self.provider_id,
                fqdn=fqdn,
                duration_ms=elapsed_ms(start_time),
                details={"http_status": 404},
            )

        if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
            code = (
                ProviderErrorCode.RATE_LIMITED
                if response.status_code == 429
                else ProviderErrorCode.SERVER_ERROR
            )
            raise ProtocolError(
                code=code.value,
                message=f"RDAP server returned HTTP {response.status_code}",
                details={"url": rdap_url},
                retryable=True,
                status_code=response.status_code,
            )

        if response.status_code != 200:
            raise ProtocolError(
                code=ProviderErrorCode.UNEXPECTED_STATUS.value,
                message=f"Unexpected HTTP status: {response.status_code}",
                details={"url": rdap_url},
                status_code=response.status_code,
            )

        try:
            json_data = response.json()
        except ValueError as e:
            raise ProtocolError(
                code=ProviderErrorCode.PARSE_ERROR.value,
                message=f"Failed to parse RDAP response: {e}",
                details={"url": rdap_url},
                status_code=200,
            )

        if not isinstance(json_data, dict) or not self._is_valid_domain_object(json_data):
            raise ProtocolError(
                code=ProviderErrorCode.PARSE_ERROR.value,
                message="Response does not contain valid domain object",
                details={"url": rdap_url},
                status_code=200,
            )

        parsed = self._parse_response(json_data)
        return LookupResult(
            available=False,
            via=self.provider_id,
            fqdn=fqdn,
            duration_ms=elapsed_ms(start_time),
            details=asdict(parsed),
        )

    def _is_valid_domain_object(self, json_data: dict) -> bool:
        # A domain object must at least carry a name
        if json_data.get("objectClassName") not in (None, "domain"):
            return False
        return bool(json_data.get("ldhName") or json_data.get("unicodeName"))

    def _parse_response(self, json_data: dict) -> RDAPParsedFields:
        """
        Parse an RDAP domain object, extracting only defined fields.

        Args:
            json_data: The raw JSON response from RDAP

        Returns:
            Parsed fields; malformed members are skipped
        """
        domain_name = json_data.get("ldhName") or json_data.get("unicodeName", "")

        status = json_data.get("status", [])
        if not isinstance(status, list):
            status = [status] if status else []

        events = []
        raw_events = json_data.get("events", [])
        if isinstance(raw_events, list):
            for event in raw_events:
                if isinstance(event, dict):
                    event_action = event.get("eventAction", "")
                    event_date = event.get("eventDate", "")
                    if event_action and event_date:
                        events.append(RDAPEvent(
                            event_action=event_action,
                            event_date=event_date,
                        ))

        nameservers = []
        raw_nameservers = json_data.get("nameservers", [])
        if isinstance(raw_nameservers, list):
            for ns in raw_nameservers:
                if isinstance(ns, dict):
                    ns_name = ns.get("ldhName") or ns.get("unicodeName", "")
                    if ns_name:
                        nameservers.append(ns_name.lower())

        return RDAPParsedFields(
            domain_name=domain_name,
            status=[str(s) for s in status],
            events=events,
            nameservers=nameservers,
        )

    def _create_simulation_result(self, fqdn: str, start_time: float) -> LookupResult:
        """Create a simulated result without network access."""
        if simulated_available(fqdn):
            return LookupResult(
                available=True,
                via=self.provider_id,
                fqdn=fqdn,
                duration_ms=elapsed_ms(start_time),
                details={"http_status": 404, "simulated": True},
            )
        return LookupResult(
            available=False,
            via=self.provider_id,
            fqdn=fqdn,
            duration_ms=elapsed_ms(start_time),
            details={
                "domain_name": fqdn,
                "status": ["active"],
                "events": [],
                "nameservers": [],
                "simulated": True,
            },
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
