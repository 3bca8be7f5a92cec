"""Subscription storage and dataset persistence."""

from .models import Entity, GroupSubscription, LiveStatus, SubscriberKind, UserSubscription
from .persistence import JsonFilePersistence, MemoryPersistence, Persistence
from .subscriptions import SubscriptionStore

__all__ = [
    "Entity",
    "GroupSubscription",
    "UserSubscription",
    "LiveStatus",
    "SubscriberKind",
    "Persistence",
    "JsonFilePersistence",
    "MemoryPersistence",
    "SubscriptionStore",
]
