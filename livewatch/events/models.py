"""Events detected by the monitors and handed to the dispatcher."""

from dataclasses import dataclass

from ..storage.models import Entity
from .feed import FeedItem


@dataclass
class LiveStarted:
    """Streamer went from not-live to live."""

    entity: Entity

    name = "live_started"


@dataclass
class LiveEnded:
    """Streamer went from live to offline or carousel."""

    entity: Entity
    duration_seconds: int | None = None

    name = "live_ended"


@dataclass
class NewFeedItem:
    """Streamer published a feed item after the last watermark."""

    entity: Entity
    item: FeedItem

    name = "feed_item"


Event = LiveStarted | LiveEnded | NewFeedItem
