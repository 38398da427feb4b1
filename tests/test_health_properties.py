"""
Property-based tests for provider health tracking.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_dash.config import HealthConfig
from domain_dash.enums import EventType
from domain_dash.events import EventBus
from domain_dash.health import HealthTracker

from fakes import EventRecorder, FakeClock


PROVIDERS = ["rdap", "whois", "dns"]


def make_tracker(threshold=5, stale=3600.0, clock=None):
    events = EventBus()
    recorder = EventRecorder(events)
    tracker = HealthTracker(
        PROVIDERS,
        HealthConfig(unhealthy_threshold=threshold, sweep_interval_seconds=300.0, stale_after_seconds=stale),
        events=events,
        clock=clock or FakeClock(),
    )
    return tracker, recorder


class TestUnhealthyTransitionProperty:
    """A provider turns Unhealthy once its consecutive failures reach the threshold."""

    @given(
        threshold=st.integers(min_value=1, max_value=8),
        failures=st.integers(min_value=0, max_value=20),
    )
    @settings(max_examples=100)
    def test_threshold_and_single_notification(self, threshold, failures):
        tracker, recorder = make_tracker(threshold=threshold)

        for _ in range(failures):
            tracker.record_failure("rdap", RuntimeError("boom"))

        assert tracker.is_healthy("rdap") == (failures < threshold)
        unhealthy_events = recorder.of(EventType.PROVIDER_UNHEALTHY)
        assert len(unhealthy_events) == (1 if failures >= threshold else 0)
        if unhealthy_events:
            assert unhealthy_events[0]["provider"] == "rdap"
            assert unhealthy_events[0]["health"]["is_healthy"] is False

    @given(pattern=st.lists(st.booleans(), min_size=1, max_size=30))
    @settings(max_examples=100)
    def test_success_resets_consecutive_failures(self, pattern):
        tracker, _ = make_tracker(threshold=100)
        expected = 0
        for succeeded in pattern:
            if succeeded:
                tracker.record_success("dns")
                expected = 0
            else:
                tracker.record_failure("dns")
                expected += 1
        assert tracker.get("dns").consecutive_failures == expected

    def test_other_providers_are_unaffected(self):
        tracker, _ = make_tracker(threshold=2)
        tracker.record_failure("whois")
        tracker.record_failure("whois")
        assert not tracker.is_healthy("whois")
        assert tracker.get_healthy_providers(PROVIDERS) == ["rdap", "dns"]

    def test_last_error_is_kept(self):
        tracker, _ = make_tracker()
        tracker.record_failure("rdap", RuntimeError("connection refused"))
        assert tracker.get("rdap").last_error == "connection refused"


class TestRecoveryProperty:
    """An Unhealthy provider recovers only through a success or a passing sweep."""

    def test_success_recovers_and_notifies(self):
        tracker, recorder = make_tracker(threshold=2)
        tracker.record_failure("rdap")
        tracker.record_failure("rdap")
        assert not tracker.is_healthy("rdap")

        tracker.record_success("rdap")

        assert tracker.is_healthy("rdap")
        recovered = recorder.of(EventType.PROVIDER_RECOVERED)
        assert len(recovered) == 1
        assert recovered[0]["provider"] == "rdap"
        assert tracker.get("rdap").consecutive_failures == 0

    def test_success_on_healthy_provider_emits_nothing(self):
        tracker, recorder = make_tracker()
        tracker.record_success("rdap")
        assert recorder.events == []

    def test_sweep_does_not_recover_above_threshold(self):
        tracker, recorder = make_tracker(threshold=2)
        tracker.record_failure("rdap")
        tracker.record_failure("rdap")

        tracker.sweep()

        assert not tracker.is_healthy("rdap")
        assert recorder.of(EventType.PROVIDER_RECOVERED) == []

    @given(elapsed=st.floats(min_value=0, max_value=10_000, allow_nan=False))
    @settings(max_examples=100)
    def test_sweep_recovers_only_fresh_providers_below_threshold(self, elapsed):
        clock = FakeClock()
        tracker, recorder = make_tracker(threshold=2, stale=3600.0, clock=clock)
        tracker.record_success("dns")
        tracker.record_failure("dns")
        tracker.record_failure("dns")
        assert not tracker.is_healthy("dns")

        # Failure count lowered without a success, e.g. by an operator edit
        tracker.get("dns").consecutive_failures = 1
        clock.now += elapsed
        tracker.sweep()

        fresh = clock.now - 1_000_000.0 <= 3600.0
        assert tracker.is_healthy("dns") == fresh
        recovered = [e["provider"] for e in recorder.of(EventType.PROVIDER_RECOVERED)]
        assert recovered == (["dns"] if fresh else [])


class TestStaleSweepProperty:
    """Staleness blocks a sweep recovery but never demotes on its own."""

    @given(
        elapsed=st.floats(min_value=0, max_value=100_000, allow_nan=False),
        failures=st.integers(min_value=0, max_value=4),
    )
    @settings(max_examples=100)
    def test_idle_provider_below_threshold_stays_healthy(self, elapsed, failures):
        clock = FakeClock()
        tracker, recorder = make_tracker(threshold=5, stale=3600.0, clock=clock)
        tracker.record_success("rdap")
        for _ in range(failures):
            tracker.record_failure("whois")

        clock.now += elapsed
        tracker.sweep()

        assert tracker.get_healthy_providers(PROVIDERS) == PROVIDERS
        assert recorder.of(EventType.PROVIDER_UNHEALTHY) == []

    def test_never_consulted_provider_stays_in_chain(self):
        clock = FakeClock()
        tracker, _ = make_tracker(stale=60.0, clock=clock)

        clock.now += 3700
        tracker.record_success("rdap")
        tracker.sweep()

        assert tracker.snapshot()["dns"] == {"failures": 0, "last_success": None, "is_healthy": True}
        assert tracker.get_healthy_providers(PROVIDERS) == PROVIDERS

    def test_stale_unhealthy_provider_is_not_recovered(self):
        clock = FakeClock()
        tracker, recorder = make_tracker(threshold=1, stale=60.0, clock=clock)
        tracker.record_failure("whois")
        tracker.get("whois").consecutive_failures = 0

        clock.now += 120
        tracker.sweep()
        tracker.sweep()

        assert not tracker.is_healthy("whois")
        assert recorder.of(EventType.PROVIDER_RECOVERED) == []
        assert len(recorder.of(EventType.PROVIDER_UNHEALTHY)) == 1


class TestSnapshotAndLifecycle:
    """Observable snapshot and background sweep."""

    def test_snapshot_shape(self):
        tracker, _ = make_tracker()
        tracker.record_success("rdap")
        tracker.record_failure("whois")

        snapshot = tracker.snapshot()

        assert set(snapshot) == set(PROVIDERS)
        assert snapshot["rdap"]["failures"] == 0
        assert snapshot["rdap"]["last_success"] is not None
        assert snapshot["whois"]["failures"] == 1
        assert snapshot["dns"]["last_success"] is None
        assert all(entry["is_healthy"] for entry in snapshot.values())

    def test_start_and_stop(self):
        async def scenario():
            tracker, _ = make_tracker()
            tracker.start()
            running = tracker._sweep_task is not None and not tracker._sweep_task.done()
            await tracker.stop()
            return running, tracker._sweep_task

        running, task = asyncio.run(scenario())
        assert running
        assert task is None
