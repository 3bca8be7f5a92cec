"""livewatch: live stream status and feed notifications for chat groups."""

__version__ = "0.1.0"
