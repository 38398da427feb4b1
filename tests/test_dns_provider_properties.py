"""
Property-based tests for the DNS provider.
"""

import asyncio

import dns.exception
import dns.resolver
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_dash.dns_provider import DNSProvider
from domain_dash.exceptions import ProtocolError, ProviderTimeoutError


class FakeRdata:
    def __init__(self, text):
        self.text = text

    def to_text(self):
        return self.text


class FakeResolver:
    """Async resolver stand-in answering from a record-type table."""

    def __init__(self, answers):
        self.answers = answers
        self.queries = []

    async def resolve(self, qname, rdtype, lifetime=None):
        self.queries.append((qname, rdtype, lifetime))
        answer = self.answers[rdtype]
        if isinstance(answer, BaseException):
            raise answer
        return [FakeRdata(text) for text in answer]


def check(answers, fqdn="example.com", timeout=None):
    resolver = FakeResolver(answers)
    provider = DNSProvider(timeout=2.0, resolver=resolver)
    return asyncio.run(provider.check(fqdn, timeout)), resolver


class TestResolutionProperty:
    """Records prove registration; NXDOMAIN alone proves nothing."""

    @given(records=st.lists(st.sampled_from(["a.iana-servers.net.", "b.iana-servers.net."]), min_size=1, max_size=4))
    @settings(max_examples=30)
    def test_delegation_means_registered(self, records):
        result, resolver = check({"NS": records, "A": dns.resolver.NXDOMAIN()})

        assert result.available is False
        assert result.via == "dns"
        assert result.details == {"record_type": "NS", "records": records}
        assert [q[1] for q in resolver.queries] == ["NS"]

    def test_address_record_means_registered(self):
        result, resolver = check({"NS": dns.resolver.NXDOMAIN(), "A": ["93.184.216.34"]})
        assert result.available is False
        assert result.details["record_type"] == "A"
        assert [q[1] for q in resolver.queries] == ["NS", "A"]

    def test_nxdomain_everywhere_is_inconclusive(self):
        result, _ = check({"NS": dns.resolver.NXDOMAIN(), "A": dns.resolver.NXDOMAIN()})
        assert result.available is None
        assert result.warning == "no_dns_records"
        assert result.error is None

    def test_existing_name_without_records_is_registered(self):
        result, _ = check({"NS": dns.resolver.NoAnswer(), "A": ["1.2.3.4"]})
        assert result.available is False
        assert result.details == {"record_type": "NS", "records": []}

    def test_lifetime_is_passed_to_resolver(self):
        _, resolver = check({"NS": ["ns1.example.net."], "A": []}, timeout=0.5)
        assert resolver.queries == [("example.com", "NS", 0.5)]

    def test_default_lifetime(self):
        _, resolver = check({"NS": ["ns1.example.net."], "A": []})
        assert resolver.queries[0][2] == 2.0


class TestFailureProperty:
    """Resolver failures raise typed, retryable errors."""

    def test_servfail_is_retryable_protocol_error(self):
        with pytest.raises(ProtocolError) as exc_info:
            check({"NS": dns.resolver.NoNameservers(), "A": []})
        assert exc_info.value.code == "servfail"
        assert exc_info.value.retryable is True

    def test_timeout(self):
        with pytest.raises(ProviderTimeoutError) as exc_info:
            check({"NS": dns.exception.Timeout(), "A": []})
        assert exc_info.value.code == "timeout"
        assert exc_info.value.retryable is True


class TestSimulationProperty:
    """Simulation mode mirrors what real DNS can tell."""

    @given(label=st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=10))
    @settings(max_examples=30)
    def test_simulated_answers(self, label):
        resolver = FakeResolver({})
        provider = DNSProvider(simulation_mode=True, resolver=resolver)

        free = asyncio.run(provider.check(f"available-{label}.com"))
        taken = asyncio.run(provider.check(f"{label}.com"))

        assert free.available is None
        assert free.warning == "no_dns_records"
        assert taken.available is False
        assert resolver.queries == []
