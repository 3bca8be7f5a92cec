"""Notification formatting, fan-out and delivery."""

from .base import DeliveryResult, DeliveryStatus, MessageSegment, SegmentType, Transport
from .dispatcher import NotificationDispatcher
from .formatter import MessageFormatter
from .onebot import OneBotTransport

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "MessageSegment",
    "SegmentType",
    "Transport",
    "NotificationDispatcher",
    "MessageFormatter",
    "OneBotTransport",
]
