"""
WHOIS provider for domain availability checking.

Queries the registry WHOIS server over TCP port 43 and classifies the text
response with strict signal matching:

- only "no match" signals present: free
- only registration indicators present: registered
- both present: inconclusive, warning ``conflicting_signals``
- neither present (or empty response): inconclusive, warning ``no_signals``

Servers are taken from a built-in table, extended by configuration; TLDs
without an entry are resolved once through the IANA referral server.
"""

import asyncio
import socket
import time
from typing import Optional

from .enums import LookupWarning, ProviderErrorCode, ProviderId
from .exceptions import NetworkError, ProtocolError, ProviderTimeoutError
from .models import LookupResult
from .provider import elapsed_ms, extension_of, simulated_available


IANA_WHOIS_SERVER = "whois.iana.org"
WHOIS_PORT = 43


class WHOISProvider:
    """
    Legacy text lookup with strict signal parsing.

    The blocking socket exchange runs in the default executor so that it
    never stalls the event loop.
    """

    provider_id = ProviderId.WHOIS.value

    # Exact "no match" signals per TLD, checked before the generic hints
    NO_MATCH_SIGNALS: dict[str, list[str]] = {
        "com": ["No match for domain"],
        "net": ["No match for domain"],
        "org": ["NOT FOUND", "Domain not found"],
        "co": ["No Data Found", "The queried object does not exist"],
        "io": ["NOT FOUND", "Domain not found"],
        "dev": ["Domain not found"],
        "app": ["Domain not found"],
        "ai": ["No Object Found", "Domain not found"],
        "de": ["Status: free"],
        "eu": ["Status: AVAILABLE"],
        "info": ["NOT FOUND", "Domain not found"],
        "biz": ["Not found:", "No Data Found"],
    }

    # Generic availability hints, matched case-insensitively
    AVAILABLE_HINTS = [
        "no match",
        "not found",
        "no data found",
        "no entries found",
        "no object found",
        "status: available",
        "status: free",
        "is available for registration",
    ]

    # Indicators that a registration record was returned
    REGISTRATION_INDICATORS = [
        "Domain Name:",
        "Registry Domain ID:",
        "Registrar:",
        "Registrant:",
        "Creation Date:",
        "Registered on:",
        "Name Server:",
        "DNSSEC:",
    ]

    # Server-side throttling notices
    RATE_LIMIT_SIGNALS = [
        "limit exceeded",
        "query rate",
        "too many requests",
        "try again later",
        "exceeded the maximum",
    ]

    # Default WHOIS servers per TLD
    WHOIS_SERVERS: dict[str, str] = {
        "com": "whois.verisign-grs.com",
        "net": "whois.verisign-grs.com",
        "org": "whois.pir.org",
        "co": "whois.registry.co",
        "io": "whois.nic.io",
        "dev": "whois.nic.google",
        "app": "whois.nic.google",
        "ai": "whois.nic.ai",
        "de": "whois.denic.de",
        "eu": "whois.eu",
        "info": "whois.nic.info",
        "biz": "whois.nic.biz",
    }

    def __init__(
        self,
        timeout: float = 10.0,
        custom_servers: Optional[dict[str, str]] = None,
        custom_signals: Optional[dict[str, list[str]]] = None,
        simulation_mode: bool = False,
        use_iana_referral: bool = True,
    ) -> None:
        """
        Initialize the WHOIS provider.

        Args:
            timeout: Socket timeout in seconds
            custom_servers: Optional custom WHOIS servers per TLD
            custom_signals: Optional custom no-match signals per TLD
            simulation_mode: If True, no real network requests are made
            use_iana_referral: Resolve unknown TLDs through whois.iana.org
        """
        self._timeout = timeout
        self._simulation_mode = simulation_mode
        self._use_iana_referral = use_iana_referral

        self._servers = dict(self.WHOIS_SERVERS)
        if custom_servers:
            self._servers.update(
                {k.lower().lstrip("."): v for k, v in custom_servers.items()}
            )

        self._signals = dict(self.NO_MATCH_SIGNALS)
        if custom_signals:
            self._signals.update(
                {k.lower().lstrip("."): v for k, v in custom_signals.items()}
            )

    async def check(self, fqdn: str, timeout: Optional[float] = None) -> LookupResult:
        """
        Query WHOIS for a fully-qualified name.

        Args:
            fqdn: Name to look up, already IDNA-encoded
            timeout: Optional socket timeout overriding the default

        Returns:
            LookupResult; inconclusive responses carry a ``warning``

        Raises:
            ProtocolError: If no server is known or the server throttles us
            ProviderTimeoutError: If the exchange times out
            NetworkError: On connection or socket failures
        """
        start_time = time.perf_counter()
        tld = extension_of(fqdn)

        if self._simulation_mode:
            return self._create_simulation_result(fqdn, start_time)

        effective_timeout = timeout or self._timeout
        server = await self.resolve_server(tld, effective_timeout)
        if not server:
            raise ProtocolError(
                code=ProviderErrorCode.NO_SERVER.value,
                message=f"No WHOIS server known for TLD: {tld}",
                details={"tld": tld},
            )

        raw_response = await self._query(fqdn, server, effective_timeout)
        available, warning = self.classify(raw_response, tld)

        return LookupResult(
            available=available,
            via=self.provider_id,
            fqdn=fqdn,
            duration_ms=elapsed_ms(start_time),
            warning=warning.value if warning else None,
            details={"server": server},
        )

    async def resolve_server(self, tld: str, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the WHOIS server for a TLD, asking IANA if none is known.

        A successful referral is cached for the lifetime of the provider.
        """
        server = self._servers.get(tld)
        if server or not self._use_iana_referral or not tld:
            return server

        raw = await self._query(tld, IANA_WHOIS_SERVER, timeout or self._timeout)
        for line in raw.splitlines():
            key, _, value = line.partition(":")
            if key.strip().lower() in ("refer", "whois") and value.strip():
                server = value.strip()
                self._servers[tld] = server
                return server
        return None

    def classify(self, raw_response: str, tld: str) -> tuple[Optional[bool], Optional[LookupWarning]]:
        """
        Classify a raw WHOIS response.

        Args:
            raw_response: Raw WHOIS response text
            tld: TLD for the per-registry signal lookup

        Returns:
            Tuple of (available, warning)

        Raises:
            ProtocolError: If the response is a throttling notice (retryable)
        """
        if not raw_response or not raw_response.strip():
            return None, LookupWarning.NO_SIGNALS

        lowered = raw_response.lower()

        free = any(signal in raw_response for signal in self._signals.get(tld, []))
        if not free:
            free = any(hint in lowered for hint in self.AVAILABLE_HINTS)

        registered = any(
            indicator.lower() in lowered for indicator in self.REGISTRATION_INDICATORS
        )

        if not free and not registered:
            if any(signal in lowered for signal in self.RATE_LIMIT_SIGNALS):
                raise ProtocolError(
                    code=ProviderErrorCode.RATE_LIMITED.value,
                    message="WHOIS server rate limit exceeded",
                    details={"tld": tld},
                    retryable=True,
                )
            return None, LookupWarning.NO_SIGNALS

        if free and registered:
            return None, LookupWarning.CONFLICTING_SIGNALS

        return free, None

    async def _query(self, query: str, server: str, timeout: float) -> str:
        """
        Execute a WHOIS exchange via socket in a worker thread.

        Args:
            query: Text to send (a domain name or a TLD for IANA)
            server: WHOIS server hostname
            timeout: Socket and overall timeout in seconds

        Returns:
            Raw WHOIS response as string
        """
        loop = asyncio.get_running_loop()

        def _sync_query() -> str:
            with socket.create_connection((server, WHOIS_PORT), timeout=timeout) as sock:
                sock.sendall(f"{query}\r\n".encode("utf-8"))

                response_parts: list[bytes] = []
                while True:
                    data = sock.recv(4096)
                    if not data:
                        break
                    response_parts.append(data)

                return b"".join(response_parts).decode("utf-8", errors="replace")

        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, _sync_query),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, socket.timeout):
            raise ProviderTimeoutError(
                code=ProviderErrorCode.TIMEOUT.value,
                message=f"WHOIS query to {server} timed out after {timeout}s",
                details={"server": server},
            )
        except OSError as e:
            raise NetworkError(
                code=ProviderErrorCode.NETWORK_ERROR.value,
                message=f"WHOIS connection error: {e}",
                details={"server": server, "errno": getattr(e, "errno", None)},
            )

    def get_supported_tlds(self) -> list[str]:
        """Return list of TLDs with known WHOIS servers."""
        return list(self._servers.keys())

    def get_signals_for_tld(self, tld: str) -> list[str]:
        """Return the "no match" signals for a specific TLD."""
        return self._signals.get(tld.lower(), [])

    def _create_simulation_result(self, fqdn: str, start_time: float) -> LookupResult:
        """
        Return a simulated result.

        Names starting with 'available-' are free, others registered.
        """
        return LookupResult(
            available=simulated_available(fqdn),
            via=self.provider_id,
            fqdn=fqdn,
            duration_ms=elapsed_ms(start_time),
            details={"server": "simulated", "simulated": True},
        )
