"""Detected events and feed item variants."""

from .feed import FeedItem, FeedItemKind, ForwardItem, ImageItem, TextItem, VideoItem
from .models import Event, LiveEnded, LiveStarted, NewFeedItem

__all__ = [
    "Event",
    "LiveStarted",
    "LiveEnded",
    "NewFeedItem",
    "FeedItem",
    "FeedItemKind",
    "VideoItem",
    "ImageItem",
    "TextItem",
    "ForwardItem",
]
