"""Tests for the notification broker."""

import threading

import pytest

from mediavault.indexer.models import NotificationType
from mediavault.indexer.notifications import NotificationBroker, scan_notification_key


@pytest.fixture
def broker():
    broker = NotificationBroker()
    yield broker
    broker.shutdown()


class TestBroker:
    """Tests for publishing and subscribing."""

    def test_fan_out(self, broker):
        first = broker.subscribe()
        second = broker.subscribe()

        broker.message("k", "Header", "Body", positive=True, timeout=5000)

        for subscription in (first, second):
            event = subscription.get(timeout=1)
            assert event.type == NotificationType.MESSAGE
            assert event.header == "Header"
            assert event.positive
            assert event.timeout == 5000

    def test_progress_is_clamped(self, broker):
        subscription = broker.subscribe()
        broker.progress("k", "Scanning", "", 1.7)
        broker.progress("k", "Scanning", "", -0.2)
        assert [e.progress for e in subscription.drain()] == [1.0, 0.0]

    def test_late_subscriber_misses_earlier_events(self, broker):
        broker.close_key("k")
        subscription = broker.subscribe()
        assert subscription.get(timeout=0.05) is None

    def test_close_unsubscribes(self, broker):
        subscription = broker.subscribe()
        assert broker.subscriber_count == 1

        subscription.close()
        broker.close_key("k")

        assert broker.subscriber_count == 0
        assert subscription.closed
        assert subscription.get(timeout=0.05) is None

    def test_context_manager(self, broker):
        with broker.subscribe() as subscription:
            assert broker.subscriber_count == 1
        assert subscription.closed
        assert broker.subscriber_count == 0

    def test_shutdown_ends_iteration(self, broker):
        subscription = broker.subscribe()
        received = []

        def consume():
            received.extend(subscription)

        thread = threading.Thread(target=consume)
        thread.start()
        broker.close_key("k")
        broker.shutdown()
        thread.join(5)

        assert not thread.is_alive()
        assert [e.type for e in received] == [NotificationType.CLOSE]


def test_scan_notification_key():
    assert scan_notification_key("u1") == "scan-u1"
