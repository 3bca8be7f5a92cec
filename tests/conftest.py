"""Pytest configuration and fixtures for livewatch tests."""

import asyncio
from typing import Dict, List, Set, Tuple

import pytest

from livewatch.config import LivewatchSettings
from livewatch.events.feed import FeedItem
from livewatch.exceptions import DeliveryFailure, FetchFailure
from livewatch.monitors.fetcher import RoomStatus, StateFetcher
from livewatch.notifications.base import MessageSegment, Transport
from livewatch.storage.models import Entity, LiveStatus, SubscriberKind
from livewatch.storage.persistence import MemoryPersistence
from livewatch.storage.subscriptions import SubscriptionStore


class FakeFetcher(StateFetcher):
    """Scriptable fetcher: set ``statuses`` and ``feeds`` between cycles."""

    def __init__(self) -> None:
        self.statuses: Dict[int, RoomStatus] = {}
        self.feeds: Dict[int, List[FeedItem]] = {}
        self.fail_status = False
        self.failing_feeds: Set[int] = set()
        self.delay = 0.0
        self.status_calls: List[Set[int]] = []
        self.feed_calls: List[int] = []
        self.closed = False

    def set_status(self, uid: int, status: LiveStatus, since: int = 0, **fields) -> None:
        fields.setdefault("room_id", uid * 10)
        fields.setdefault("name", f"streamer-{uid}")
        self.statuses[uid] = RoomStatus(uid=uid, status=status, status_since=since, **fields)

    async def fetch_status(self, uids):
        uids = set(uids)
        self.status_calls.append(uids)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_status:
            raise FetchFailure("status endpoint unavailable")
        return {uid: self.statuses[uid] for uid in uids if uid in self.statuses}

    async def fetch_feed_items(self, uid):
        self.feed_calls.append(uid)
        if self.delay:
            await asyncio.sleep(self.delay)
        if uid in self.failing_feeds:
            raise FetchFailure(f"feed for {uid} unavailable")
        return list(self.feeds.get(uid, []))

    async def close(self) -> None:
        self.closed = True


class RecordingTransport(Transport):
    """Records deliveries; recipients in ``failing`` raise, in ``hanging`` never return."""

    def __init__(self) -> None:
        self.sent: List[Tuple[SubscriberKind, str, List[MessageSegment]]] = []
        self.failing: Set[str] = set()
        self.hanging: Set[str] = set()
        self.closed = False

    async def deliver(self, kind, recipient_id, segments):
        if recipient_id in self.hanging:
            await asyncio.sleep(3600)
        if recipient_id in self.failing:
            raise DeliveryFailure(f"{recipient_id} rejected the message")
        self.sent.append((kind, recipient_id, segments))

    def recipients(self) -> List[Tuple[SubscriberKind, str]]:
        return [(kind, recipient_id) for kind, recipient_id, _ in self.sent]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def persistence():
    """Provide in-memory dataset persistence."""
    return MemoryPersistence()


@pytest.fixture
def store(persistence):
    """Provide a SubscriptionStore that verifies its index after every mutation."""
    store = SubscriptionStore(persistence, strict=True)
    store.load()
    return store


@pytest.fixture
def sample_entity():
    """Provide a sample offline streamer."""
    return Entity(
        uid=100,
        room_id=5050,
        name="Alice",
        title="Speedrun practice",
        cover_url="https://i0.hdslb.com/cover.jpg",
        area_name="Retro",
        parent_area_name="Games",
    )


@pytest.fixture
def fetcher():
    """Provide a scriptable state fetcher."""
    return FakeFetcher()


@pytest.fixture
def transport():
    """Provide a recording transport."""
    return RecordingTransport()


@pytest.fixture
def settings(tmp_path):
    """Provide test settings."""
    return LivewatchSettings(
        log_level="DEBUG",
        data_dir=tmp_path,
        debug_checks=True,
        fetch_timeout=5,
        metrics_enabled=False,
        health_port=9999,
    )
