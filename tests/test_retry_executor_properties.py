"""
Property-based tests for the retry executor.
"""

import asyncio
import errno
import io
import random
import socket

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_dash.activity_log import ActivityLog
from domain_dash.config import RetryConfig, RetryPolicy
from domain_dash.enums import LogLevel
from domain_dash.exceptions import NetworkError, ProtocolError, ProviderTimeoutError
from domain_dash.retry_executor import RetryExecutor


@st.composite
def retry_policy_strategy(draw):
    """Generate a valid retry policy."""
    min_delay = draw(st.floats(min_value=0.01, max_value=5.0, allow_nan=False, allow_infinity=False))
    max_delay = draw(st.floats(min_value=min_delay, max_value=60.0, allow_nan=False, allow_infinity=False))
    return RetryPolicy(
        max_attempts=draw(st.integers(min_value=1, max_value=6)),
        min_delay_seconds=min_delay,
        max_delay_seconds=max_delay,
        factor=draw(st.floats(min_value=1.0, max_value=3.0, allow_nan=False, allow_infinity=False)),
        randomize=draw(st.booleans()),
    )


class SleepRecorder:
    """Replaces asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_executor(policy: RetryPolicy, **kwargs) -> RetryExecutor:
    return RetryExecutor(RetryConfig(default=policy, per_provider={}), **kwargs)


class FlakyOperation:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestBackoffDelayProperty:
    """delay(n) = min(min_delay * factor^n * jitter, max_delay)."""

    @given(policy=retry_policy_strategy(), attempt=st.integers(min_value=0, max_value=8))
    @settings(max_examples=100)
    def test_delay_is_bounded(self, policy, attempt):
        executor = make_executor(policy, rng=random.Random(7))
        base = policy.min_delay_seconds * (policy.factor ** attempt)

        delay = executor._calculate_delay(attempt, policy)

        assert delay <= policy.max_delay_seconds
        assert delay >= min(base, policy.max_delay_seconds)
        if policy.randomize:
            assert delay <= min(base * 2, policy.max_delay_seconds)
        else:
            assert delay == pytest.approx(min(base, policy.max_delay_seconds))

    @given(policy=retry_policy_strategy())
    @settings(max_examples=50)
    def test_delays_grow_until_capped(self, policy):
        policy.randomize = False
        executor = make_executor(policy)
        delays = [executor._calculate_delay(n, policy) for n in range(6)]
        assert delays == sorted(delays)
        assert delays[-1] <= policy.max_delay_seconds


class TestRetryableClassificationProperty:
    """Only transient failures are retried."""

    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        socket.timeout("timed out"),
        socket.gaierror(-2, "Name or service not known"),
        ConnectionResetError(errno.ECONNRESET, "reset"),
        ConnectionRefusedError(errno.ECONNREFUSED, "refused"),
        OSError(errno.EHOSTUNREACH, "No route to host"),
        httpx.ConnectError("connection failed"),
        NetworkError(code="network_error", message="unreachable"),
        ProviderTimeoutError(code="timeout", message="slow"),
        ProtocolError(code="server_error", message="HTTP 503", status_code=503),
        ProtocolError(code="rate_limited", message="HTTP 429", status_code=429),
        ProtocolError(code="unexpected_status", message="HTTP 408", status_code=408),
        RuntimeError("operation timed out"),
    ])
    def test_transient_errors_are_retryable(self, error):
        executor = make_executor(RetryPolicy())
        assert executor.is_retryable(error, "rdap")

    @pytest.mark.parametrize("error", [
        ProtocolError(code="parse_error", message="Invalid JSON"),
        ProtocolError(code="unexpected_status", message="HTTP 400", status_code=400),
        ProtocolError(code="tls_error", message="certificate verify failed"),
        ValueError("bad input"),
        KeyError("missing"),
    ])
    def test_permanent_errors_are_not_retryable(self, error):
        executor = make_executor(RetryPolicy())
        assert not executor.is_retryable(error, "rdap")

    def test_provider_specific_signatures(self):
        executor = make_executor(RetryPolicy())
        servfail = RuntimeError("SERVFAIL from upstream")
        assert executor.is_retryable(servfail, "dns")
        assert not executor.is_retryable(servfail, "rdap")

    def test_http_status_errors(self):
        executor = make_executor(RetryPolicy())
        request = httpx.Request("GET", "https://rdap.org/domain/example.com")

        def status_error(code):
            response = httpx.Response(code, request=request)
            return httpx.HTTPStatusError("status", request=request, response=response)

        assert executor.is_retryable(status_error(502), "rdap")
        assert executor.is_retryable(status_error(429), "rdap")
        assert not executor.is_retryable(status_error(403), "rdap")


class TestExecuteProperty:
    """Retry loop behaviour."""

    @given(failures=st.integers(min_value=0, max_value=3))
    @settings(max_examples=20)
    def test_transient_failures_then_success(self, failures):
        policy = RetryPolicy(max_attempts=4, min_delay_seconds=1.0, max_delay_seconds=30.0, randomize=False)
        sleeper = SleepRecorder()
        executor = make_executor(policy, sleep=sleeper)
        operation = FlakyOperation([asyncio.TimeoutError()] * failures)

        result = asyncio.run(executor.execute(operation, "rdap"))

        assert result == "ok"
        assert operation.calls == failures + 1
        assert sleeper.delays == [1.0 * 2 ** n for n in range(failures)]

    @given(max_attempts=st.integers(min_value=1, max_value=6))
    @settings(max_examples=20)
    def test_exhaustion_raises_last_error(self, max_attempts):
        policy = RetryPolicy(max_attempts=max_attempts, min_delay_seconds=0.0, max_delay_seconds=0.0)
        sleeper = SleepRecorder()
        executor = make_executor(policy, sleep=sleeper)
        errors = [NetworkError(code="network_error", message=f"attempt {n}") for n in range(10)]
        operation = FlakyOperation(errors)

        with pytest.raises(NetworkError) as exc_info:
            asyncio.run(executor.execute(operation, "whois"))

        assert operation.calls == max_attempts
        assert exc_info.value.message == f"attempt {max_attempts - 1}"
        assert len(sleeper.delays) == max_attempts - 1

    def test_non_retryable_error_aborts_immediately(self):
        sleeper = SleepRecorder()
        executor = make_executor(RetryPolicy(max_attempts=5), sleep=sleeper)
        operation = FlakyOperation([ProtocolError(code="parse_error", message="garbage")])

        with pytest.raises(ProtocolError):
            asyncio.run(executor.execute(operation, "rdap"))

        assert operation.calls == 1
        assert sleeper.delays == []

    def test_per_provider_policy_applies(self):
        config = RetryConfig(
            default=RetryPolicy(max_attempts=1),
            per_provider={"whois": RetryPolicy(max_attempts=3, min_delay_seconds=0.0, max_delay_seconds=0.0)},
        )
        executor = RetryExecutor(config, sleep=SleepRecorder())

        whois_op = FlakyOperation([asyncio.TimeoutError()] * 2)
        dns_op = FlakyOperation([asyncio.TimeoutError()] * 2)

        assert asyncio.run(executor.execute(whois_op, "whois")) == "ok"
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(executor.execute(dns_op, "dns"))
        assert dns_op.calls == 1

    def test_each_failed_attempt_is_logged(self):
        stream = io.StringIO()
        logger = ActivityLog(output_format="json", output_stream=stream, level=LogLevel.DEBUG)
        policy = RetryPolicy(max_attempts=3, min_delay_seconds=0.0, max_delay_seconds=0.0)
        executor = make_executor(policy, logger=logger, sleep=SleepRecorder())
        operation = FlakyOperation([asyncio.TimeoutError(), asyncio.TimeoutError()])

        asyncio.run(executor.execute(operation, "dns"))

        retry_entries = [e for e in logger.entries if e.component == "retry"]
        assert len(retry_entries) == 2
        assert all(e.level == LogLevel.WARN for e in retry_entries)
        assert [e.data["attempt"] for e in retry_entries] == [1, 2]
        assert retry_entries[0].data["provider"] == "dns"

    def test_wrap_passes_arguments(self):
        executor = make_executor(RetryPolicy(max_attempts=2, min_delay_seconds=0.0, max_delay_seconds=0.0),
                                 sleep=SleepRecorder())
        calls = []

        async def lookup(name, timeout=None):
            calls.append((name, timeout))
            if len(calls) == 1:
                raise ConnectionResetError(errno.ECONNRESET, "reset")
            return name.upper()

        retried = executor.wrap("rdap", lookup)
        assert asyncio.run(retried("example.com", timeout=3)) == "EXAMPLE.COM"
        assert calls == [("example.com", 3), ("example.com", 3)]
