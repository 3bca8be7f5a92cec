"""Polling of live status and streamer feeds."""

from .bilibili import BilibiliClient
from .controller import FeedMonitor, LiveMonitor, MonitoringController, PollMonitor
from .fetcher import RoomStatus, StateFetcher
from .state import FeedCache, StatusCache, Transition

__all__ = [
    "BilibiliClient",
    "RoomStatus",
    "StateFetcher",
    "StatusCache",
    "FeedCache",
    "Transition",
    "PollMonitor",
    "LiveMonitor",
    "FeedMonitor",
    "MonitoringController",
]
