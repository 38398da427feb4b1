"""
DNS provider for domain availability checking.

Uses dnspython's async resolver to look for delegation (NS) and address
(A) records. DNS can prove that a name exists but never that it is free:
an unregistered name and a registered name without delegation both answer
NXDOMAIN, so NXDOMAIN is reported as inconclusive.
"""

import time
from typing import Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from .enums import LookupWarning, ProviderErrorCode, ProviderId
from .exceptions import ProtocolError, ProviderTimeoutError
from .models import LookupResult
from .provider import elapsed_ms, simulated_available


class DNSProvider:
    """Name-resolution lookup trying NS and then A records."""

    provider_id = ProviderId.DNS.value

    RECORD_TYPES = ("NS", "A")

    def __init__(
        self,
        timeout: float = 5.0,
        nameservers: Optional[list[str]] = None,
        simulation_mode: bool = False,
        resolver: Optional[dns.asyncresolver.Resolver] = None,
    ) -> None:
        """
        Initialize the DNS provider.

        Args:
            timeout: Resolver lifetime per query in seconds
            nameservers: Optional explicit nameserver IPs
            simulation_mode: If True, no real network requests are made
            resolver: Optional preconfigured resolver (used by tests)
        """
        self._timeout = timeout
        self._simulation_mode = simulation_mode
        self._nameservers = nameservers
        self._resolver = resolver

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            resolver = dns.asyncresolver.Resolver()
            if self._nameservers:
                resolver.nameservers = list(self._nameservers)
            resolver.timeout = self._timeout
            resolver.lifetime = self._timeout
            self._resolver = resolver
        return self._resolver

    async def check(self, fqdn: str, timeout: Optional[float] = None) -> LookupResult:
        """
        Resolve a fully-qualified name.

        Args:
            fqdn: Name to look up, already IDNA-encoded
            timeout: Optional resolver lifetime overriding the default

        Returns:
            ``available=False`` when any record type answers or the name
            exists without that type; inconclusive with warning
            ``no_dns_records`` when every query returns NXDOMAIN

        Raises:
            ProtocolError: On SERVFAIL/REFUSED from every nameserver (retryable)
            ProviderTimeoutError: If the resolver lifetime is exceeded
        """
        start_time = time.perf_counter()

        if self._simulation_mode:
            if simulated_available(fqdn):
                return LookupResult(
                    available=None,
                    via=self.provider_id,
                    fqdn=fqdn,
                    duration_ms=elapsed_ms(start_time),
                    warning=LookupWarning.NO_DNS_RECORDS.value,
                    details={"simulated": True},
                )
            return LookupResult(
                available=False,
                via=self.provider_id,
                fqdn=fqdn,
                duration_ms=elapsed_ms(start_time),
                details={"record_type": "NS", "records": ["ns1.simulated.invalid"], "simulated": True},
            )

        resolver = self._get_resolver()
        lifetime = timeout or self._timeout

        for record_type in self.RECORD_TYPES:
            try:
                answer = await resolver.resolve(fqdn, record_type, lifetime=lifetime)
            except dns.resolver.NXDOMAIN:
                continue
            except dns.resolver.NoAnswer:
                # The name exists, it just has no records of this type
                return LookupResult(
                    available=False,
                    via=self.provider_id,
                    fqdn=fqdn,
                    duration_ms=elapsed_ms(start_time),
                    details={"record_type": record_type, "records": []},
                )
            except dns.resolver.NoNameservers as e:
                raise ProtocolError(
                    code=ProviderErrorCode.SERVFAIL.value,
                    message=f"DNS SERVFAIL/REFUSED for {fqdn}: {e}",
                    details={"record_type": record_type},
                    retryable=True,
                )
            except dns.exception.Timeout as e:
                raise ProviderTimeoutError(
                    code=ProviderErrorCode.TIMEOUT.value,
                    message=f"DNS query timeout for {fqdn}: {e}",
                    details={"record_type": record_type},
                )

            return LookupResult(
                available=False,
                via=self.provider_id,
                fqdn=fqdn,
                duration_ms=elapsed_ms(start_time),
                details={
                    "record_type": record_type,
                    "records": [rdata.to_text() for rdata in answer],
                },
            )

        return LookupResult(
            available=None,
            via=self.provider_id,
            fqdn=fqdn,
            duration_ms=elapsed_ms(start_time),
            warning=LookupWarning.NO_DNS_RECORDS.value,
        )
