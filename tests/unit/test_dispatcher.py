"""Unit tests for NotificationDispatcher."""

from unittest.mock import AsyncMock

import pytest

from livewatch.events.models import LiveEnded, LiveStarted
from livewatch.notifications.base import DeliveryStatus, SegmentType
from livewatch.notifications.dispatcher import NotificationDispatcher
from livewatch.notifications.formatter import MessageFormatter
from livewatch.storage.models import SubscriberKind


@pytest.fixture
async def subscribed_store(store, sample_entity):
    """Provide a store where streamer 100 has groups G1, G2 and user U1."""
    await store.upsert_entity(sample_entity)
    await store.subscribe_group("G1", 100)
    await store.subscribe_group("G2", 100)
    await store.subscribe_user("U1", 100)
    return store


class TestNotify:
    """Test event fan-out."""

    async def test_no_subscribers_no_calls(self, store, sample_entity):
        """Test that an event without subscribers never reaches the transport."""
        transport = AsyncMock()
        dispatcher = NotificationDispatcher(store, transport)
        await store.upsert_entity(sample_entity)

        results = await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        assert results == []
        transport.deliver.assert_not_called()

    async def test_every_recipient_gets_one_message(self, subscribed_store, transport, sample_entity):
        """Test one delivery per enabled group and user."""
        dispatcher = NotificationDispatcher(subscribed_store, transport)

        results = await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        assert transport.recipients() == [
            (SubscriberKind.GROUP, "G1"),
            (SubscriberKind.GROUP, "G2"),
            (SubscriberKind.USER, "U1"),
        ]
        assert all(r.ok for r in results)
        assert dispatcher.get_stats() == {"delivered": 3, "failed": 0}

    async def test_disabled_group_is_skipped(self, subscribed_store, transport, sample_entity):
        """Test that groups with notifications off receive nothing."""
        await subscribed_store.set_group_flag("G2", "enabled", False)
        dispatcher = NotificationDispatcher(subscribed_store, transport)

        await dispatcher.notify(100, LiveEnded(entity=sample_entity, duration_seconds=60))

        assert (SubscriberKind.GROUP, "G2") not in transport.recipients()
        assert len(transport.sent) == 2

    async def test_mention_all_only_for_flagged_groups(self, subscribed_store, transport, sample_entity):
        """Test the at-all marker on and off."""
        await subscribed_store.set_group_flag("G1", "mention_all", True)
        dispatcher = NotificationDispatcher(subscribed_store, transport)

        await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        by_recipient = {recipient: segments for _, recipient, segments in transport.sent}
        assert by_recipient["G1"][0].type is SegmentType.AT_ALL
        assert SegmentType.AT_ALL not in [s.type for s in by_recipient["G2"]]
        assert SegmentType.AT_ALL not in [s.type for s in by_recipient["U1"]]

    async def test_failure_is_isolated(self, subscribed_store, transport, sample_entity):
        """Test that one failing recipient does not affect the others."""
        transport.failing.add("G1")
        dispatcher = NotificationDispatcher(subscribed_store, transport)

        results = await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        statuses = {r.recipient_id: r.status for r in results}
        assert statuses == {
            "G1": DeliveryStatus.FAILED,
            "G2": DeliveryStatus.SUCCESS,
            "U1": DeliveryStatus.SUCCESS,
        }
        assert "rejected" in next(r.message for r in results if r.recipient_id == "G1")
        assert transport.recipients() == [(SubscriberKind.GROUP, "G2"), (SubscriberKind.USER, "U1")]
        assert dispatcher.get_stats() == {"delivered": 2, "failed": 1}

    async def test_slow_delivery_times_out(self, subscribed_store, transport, sample_entity):
        """Test that a hanging transport call is bounded."""
        transport.hanging.add("G2")
        dispatcher = NotificationDispatcher(subscribed_store, transport, delivery_timeout=0.05)

        results = await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        statuses = {r.recipient_id: r.status for r in results}
        assert statuses["G2"] is DeliveryStatus.TIMEOUT
        assert statuses["G1"] is DeliveryStatus.SUCCESS
        assert statuses["U1"] is DeliveryStatus.SUCCESS

    async def test_broken_group_template_reaches_everyone(self, subscribed_store, transport, sample_entity):
        """Test that a template that cannot be rendered falls back for that group only."""
        await subscribed_store.set_group_template("G1", "{uid[x]} is live")
        await subscribed_store.set_group_template("G2", "{name} on air")
        dispatcher = NotificationDispatcher(subscribed_store, transport)

        results = await dispatcher.notify(100, LiveStarted(entity=sample_entity))

        assert all(r.ok for r in results)
        texts = {recipient: segments[0].data["text"] for _, recipient, segments in transport.sent}
        assert texts["G1"].startswith("🎉 Alice is live!")
        assert texts["G2"] == "Alice on air"
        assert texts["U1"].startswith("🎉 Alice is live!")

    async def test_formatting_error_is_isolated(self, subscribed_store, transport, sample_entity):
        """Test that a message that cannot be built fails only its recipient."""

        class FailingFormatter(MessageFormatter):
            def build(self, event, group=None):
                if group is not None and group.group_id == "G1":
                    raise TypeError("cannot render")
                return super().build(event, group)

        dispatcher = NotificationDispatcher(subscribed_store, transport, formatter=FailingFormatter())

        results = await dispatcher.notify(100, LiveEnded(entity=sample_entity, duration_seconds=5))

        statuses = {r.recipient_id: r.status for r in results}
        assert statuses == {
            "G1": DeliveryStatus.FAILED,
            "G2": DeliveryStatus.SUCCESS,
            "U1": DeliveryStatus.SUCCESS,
        }
        assert transport.recipients() == [(SubscriberKind.GROUP, "G2"), (SubscriberKind.USER, "U1")]
