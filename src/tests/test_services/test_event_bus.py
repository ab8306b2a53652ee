"""
Tests for EventBus
"""

import gc

import pytest

from services import Events
from services.event_bus import EventBus


@pytest.fixture
def bus():
    """Threaded bus, stopped after the test"""
    local_bus = EventBus()
    local_bus.start()
    yield local_bus
    local_bus.stop()


class TestEventBusSubscription:
    """Tests for event subscription"""

    def test_subscribe_to_event(self, bus):
        """Test subscribing to an event"""
        received_events = []

        def handler(event_dict):
            received_events.append(event_dict["data"])

        bus.subscribe(Events.BET_PLACED, handler)
        bus.publish(Events.BET_PLACED, {"test": "data"})
        assert bus.wait_until_idle()

        assert len(received_events) == 1
        assert received_events[0]["test"] == "data"

    def test_unsubscribe_from_event(self, bus):
        """Test unsubscribing from an event"""
        received_events = []

        def handler(data):
            received_events.append(data)

        bus.subscribe(Events.BET_PLACED, handler)
        bus.unsubscribe(Events.BET_PLACED, handler)

        bus.publish(Events.BET_PLACED, {"test": "data"})
        assert bus.wait_until_idle()

        assert len(received_events) == 0

    def test_duplicate_subscription_ignored(self, bus):
        received = []

        def handler(event_dict):
            received.append(event_dict)

        bus.subscribe(Events.ROUND_CRASHED, handler)
        bus.subscribe(Events.ROUND_CRASHED, handler)
        bus.publish(Events.ROUND_CRASHED)
        assert bus.wait_until_idle()

        assert len(received) == 1

    def test_bound_method_unsubscribe(self):
        """Bound methods are matched by instance and function"""
        local_bus = EventBus(synchronous=True)

        class Listener:
            def __init__(self):
                self.calls = 0

            def on_event(self, event_dict):
                self.calls += 1

        listener = Listener()
        local_bus.subscribe(Events.MULTIPLIER_TICK, listener.on_event)
        local_bus.publish(Events.MULTIPLIER_TICK)
        local_bus.unsubscribe(Events.MULTIPLIER_TICK, listener.on_event)
        local_bus.publish(Events.MULTIPLIER_TICK)

        assert listener.calls == 1


class TestEventBusSubscriberIntrospection:
    """Tests for subscriber introspection helpers."""

    def test_has_subscribers_prunes_dead_weakrefs(self):
        """has_subscribers() ignores/prunes dead weakref entries."""
        local_bus = EventBus()

        def subscribe_temporary_handler():
            def handler(_event_dict):
                pass

            local_bus.subscribe(Events.BET_PLACED, handler, weak=True)

        subscribe_temporary_handler()
        gc.collect()

        assert local_bus.has_subscribers(Events.BET_PLACED) is False

    def test_strong_subscription_survives(self):
        local_bus = EventBus()
        local_bus.subscribe(Events.BET_PLACED, lambda event_dict: None, weak=False)
        gc.collect()

        assert local_bus.has_subscribers(Events.BET_PLACED) is True


class TestEventBusPublishing:
    """Tests for event publishing"""

    def test_publish_multiple_events_in_order(self, bus):
        """Test publishing multiple events"""
        received_events = []

        def handler(event_dict):
            received_events.append(event_dict["data"])

        bus.subscribe(Events.MULTIPLIER_TICK, handler)

        for i in range(1, 4):
            bus.publish(Events.MULTIPLIER_TICK, {"event": i})
        assert bus.wait_until_idle()

        assert [e["event"] for e in received_events] == [1, 2, 3]

    def test_event_name_in_payload(self):
        local_bus = EventBus(synchronous=True)
        received = []

        def handler(event_dict):
            received.append(event_dict)

        local_bus.subscribe(Events.ROUND_STARTED, handler)
        local_bus.publish(Events.ROUND_STARTED, {"round_id": "abc"})

        assert received == [{"name": "round.started", "data": {"round_id": "abc"}}]

    def test_publish_with_no_subscribers(self, bus):
        """Publishing without subscribers doesn't error"""
        bus.publish(Events.BET_LOST, {"test": "data"})
        assert bus.wait_until_idle()

    def test_full_queue_drops_events(self):
        local_bus = EventBus(max_queue_size=2)

        for _ in range(3):
            local_bus.publish(Events.MULTIPLIER_TICK)

        assert local_bus.get_stats()["events_dropped"] == 1


class TestEventBusStatistics:
    """Tests for event bus statistics"""

    def test_stats_increment_on_publish(self):
        local_bus = EventBus(synchronous=True)

        def handler(event_dict):
            pass

        local_bus.subscribe(Events.BET_PLACED, handler)
        local_bus.publish(Events.BET_PLACED)

        stats = local_bus.get_stats()
        assert stats["events_published"] == 1
        assert stats["events_processed"] == 1
        assert stats["subscriber_count"] == 1
        assert stats["synchronous"] is True


class TestEventBusErrorHandling:
    """Tests for error handling"""

    def test_handler_exception_doesnt_break_other_handlers(self, bus):
        """Test exception in one handler doesn't affect others"""
        received = []

        def bad_handler(data):
            raise Exception("Handler error")

        def good_handler(data):
            received.append(data)

        bus.subscribe(Events.BET_PLACED, bad_handler)
        bus.subscribe(Events.BET_PLACED, good_handler)

        bus.publish(Events.BET_PLACED, {"test": "data"})
        assert bus.wait_until_idle()

        assert len(received) == 1
        assert bus.get_stats()["errors"] == 1


class TestEventBusShutdown:
    """Tests for graceful shutdown logic"""

    def test_stop_handles_full_queue(self):
        """Stopping should succeed even when queue is full"""
        local_bus = EventBus(max_queue_size=1)
        local_bus._processing = True
        local_bus._thread = None
        local_bus._queue.put_nowait((Events.MULTIPLIER_TICK, {}))

        local_bus.stop()

        assert local_bus._processing is False

    def test_synchronous_start_is_noop(self):
        local_bus = EventBus(synchronous=True)
        local_bus.start()

        assert local_bus.get_stats()["processing"] is False
