"""Tests for the event bus."""

from datetime import datetime

from crmsync.events import Event, EventBus, LogHandled, SyncCompleted


class TestEventBus:
    """Tests for subscribe/publish."""

    def test_publish_to_subscriber(self):
        bus = EventBus()
        received = []
        bus.subscribe(SyncCompleted, received.append)

        delivered = bus.publish(SyncCompleted(crm="mautic", tag_count=2, field_count=3))

        assert delivered == 1
        assert received[0].crm == "mautic"
        assert received[0].tag_count == 2

    def test_only_matching_type(self):
        bus = EventBus()
        received = []
        bus.subscribe(SyncCompleted, received.append)
        bus.publish(
            LogHandled(
                timestamp=datetime(2024, 1, 1),
                level="info",
                user=1,
                message="m",
                source="s",
            )
        )
        assert received == []

    def test_base_class_subscription(self):
        """Subscribing to Event receives every event."""
        bus = EventBus()
        received = []
        bus.subscribe(Event, received.append)
        bus.publish(SyncCompleted(crm="salesforce"))
        assert len(received) == 1

    def test_failing_subscriber_does_not_stop_delivery(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(SyncCompleted, broken)
        bus.subscribe(SyncCompleted, received.append)

        delivered = bus.publish(SyncCompleted(crm="mautic"))

        assert delivered == 1
        assert len(received) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(SyncCompleted, received.append)
        bus.unsubscribe(SyncCompleted, received.append)
        assert bus.publish(SyncCompleted(crm="mautic")) == 0
