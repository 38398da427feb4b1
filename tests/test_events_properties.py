"""
Property-based tests for the event bus.
"""

import asyncio
import io

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_dash.activity_log import ActivityLog
from domain_dash.enums import EventType
from domain_dash.events import EventBus


class TestDeliveryProperty:
    """Subscribers receive exactly the events they registered for."""

    @given(emitted=st.lists(st.sampled_from(list(EventType)), max_size=20))
    @settings(max_examples=100)
    def test_typed_and_wildcard_delivery(self, emitted):
        bus = EventBus()
        typed = []
        everything = []
        bus.subscribe(EventType.AVAILABLE, typed.append)
        bus.subscribe_all(everything.append)

        for event_type in emitted:
            bus.emit(event_type, domain="example")

        assert [e.type for e in everything] == emitted
        assert len(typed) == emitted.count(EventType.AVAILABLE)
        assert all(e["domain"] == "example" for e in typed)

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(EventType.UPDATED, received.append)
        bus.emit(EventType.UPDATED, domain="a")
        unsubscribe()
        unsubscribe()
        bus.emit(EventType.UPDATED, domain="b")
        assert [e["domain"] for e in received] == ["a"]
        assert bus.subscriber_count(EventType.UPDATED) == 0

    def test_emit_returns_event_with_payload(self):
        bus = EventBus()
        event = bus.emit(EventType.CYCLE_SKIPPED, reason="already running", current_cycle=3)
        assert event.type == EventType.CYCLE_SKIPPED
        assert event["current_cycle"] == 3
        assert event.get("missing", "fallback") == "fallback"
        assert event.timestamp


class TestIsolationProperty:
    """A failing subscriber never affects the emitter or other subscribers."""

    def test_failing_subscriber_is_logged_and_skipped(self):
        stream = io.StringIO()
        logger = ActivityLog(output_format="text", output_stream=stream)
        bus = EventBus(logger=logger)
        received = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(EventType.AVAILABLE, broken)
        bus.subscribe(EventType.AVAILABLE, received.append)

        bus.emit(EventType.AVAILABLE, domain="example")

        assert len(received) == 1
        assert any("Subscriber failed" in e.message for e in logger.entries)
        assert "subscriber bug" in stream.getvalue()

    def test_async_subscribers_run_on_the_loop(self):
        async def scenario():
            bus = EventBus()
            received = []

            async def handler(event):
                await asyncio.sleep(0)
                received.append(event["domain"])

            bus.subscribe(EventType.AVAILABLE, handler)
            bus.emit(EventType.AVAILABLE, domain="example")
            await bus.drain()
            return received

        assert asyncio.run(scenario()) == ["example"]

    def test_async_subscriber_failure_is_logged(self):
        async def scenario():
            logger = ActivityLog(output_stream=io.StringIO())
            bus = EventBus(logger=logger)

            async def handler(event):
                raise ValueError("async bug")

            bus.subscribe(EventType.UPDATED, handler)
            bus.emit(EventType.UPDATED, domain="example")
            await bus.drain()
            return logger

        logger = asyncio.run(scenario())
        assert any(e.data.get("error_message") == "async bug" for e in logger.entries)

    def test_async_subscriber_without_loop_is_dropped(self):
        logger = ActivityLog(output_stream=io.StringIO())
        bus = EventBus(logger=logger)

        async def handler(event):
            pass

        bus.subscribe(EventType.UPDATED, handler)
        bus.emit(EventType.UPDATED, domain="example")

        assert any("no running event loop" in e.message for e in logger.entries)
