"""Subscription store with a reverse index for fan-out lookups."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from ..exceptions import EntityNotFound, StoreInvariantError
from .models import Entity, GroupSubscription, SubscriberKind, UserSubscription
from .persistence import Persistence

logger = structlog.get_logger(__name__)

ENTITIES_DATASET = "entities"
GROUP_SUBS_DATASET = "group-subs"
USER_SUBS_DATASET = "user-subs"

GROUP_FLAGS = ("mention_all", "enabled")


class SubscriptionStore:
    """Streamers, group and user subscriptions, and the derived reverse index.

    The group and user records are authoritative. ``_group_index`` and
    ``_user_index`` map a streamer uid to the ids of the subscribers holding it
    and are updated inside the same locked section as every mutation of a
    subscriber's list, so readers never observe them out of step. Index rows
    are dropped as soon as they become empty.
    """

    def __init__(self, persistence: Persistence, strict: bool = False) -> None:
        """Initialize the store.

        Args:
            persistence: Dataset persistence backend
            strict: Re-verify the whole reverse index after every mutation
        """
        self.persistence = persistence
        self.strict = strict

        self._entities: Dict[int, Entity] = {}
        self._groups: Dict[str, GroupSubscription] = {}
        self._users: Dict[str, UserSubscription] = {}
        self._group_index: Dict[int, Set[str]] = {}
        self._user_index: Dict[int, Set[str]] = {}
        self._tracking: Dict[int, int] = {}
        self._tracking_counter = 0
        self._lock = asyncio.Lock()

        logger.info("Initialized SubscriptionStore", strict=strict)

    # Loading and saving

    def load(self) -> None:
        """Load all datasets into memory and rebuild the reverse index."""
        self._entities.clear()
        for key, data in self.persistence.load(ENTITIES_DATASET, {}).items():
            try:
                entity = Entity.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed streamer record", key=key, error=str(e))
                continue
            self._entities[entity.uid] = entity

        self._groups.clear()
        for group_id, data in self.persistence.load(GROUP_SUBS_DATASET, {}).items():
            try:
                self._groups[group_id] = GroupSubscription.from_dict(group_id, data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed group subscription", group_id=group_id, error=str(e))

        self._users.clear()
        for user_id, data in self.persistence.load(USER_SUBS_DATASET, {}).items():
            try:
                self._users[user_id] = UserSubscription.from_dict(user_id, data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed user subscription", user_id=user_id, error=str(e))

        self._drop_dangling_references()
        self._group_index, self._user_index = self._scan_index()
        self._tracking.clear()

        logger.info("Loaded subscription data", **self.get_stats())

    def _drop_dangling_references(self) -> None:
        """Remove subscriptions that point at streamers with no record."""
        subscriptions = [(group_id, sub) for group_id, sub in self._groups.items()]
        subscriptions += [(user_id, sub) for user_id, sub in self._users.items()]

        for subscriber_id, sub in subscriptions:
            kept: List[int] = []
            for uid in sub.entity_ids:
                if uid in self._entities and uid not in kept:
                    kept.append(uid)
            if kept != sub.entity_ids:
                logger.warning(
                    "Dropped dangling subscription entries",
                    subscriber=subscriber_id,
                    removed=[uid for uid in sub.entity_ids if uid not in kept],
                )
                sub.entity_ids = kept

    def _save_entities(self) -> None:
        self.persistence.save(
            ENTITIES_DATASET,
            {str(uid): entity.to_dict() for uid, entity in self._entities.items()},
        )

    def _save_groups(self) -> None:
        self.persistence.save(
            GROUP_SUBS_DATASET,
            {group_id: sub.to_dict() for group_id, sub in self._groups.items()},
        )

    def _save_users(self) -> None:
        self.persistence.save(
            USER_SUBS_DATASET,
            {user_id: sub.to_dict() for user_id, sub in self._users.items()},
        )

    # Reverse index

    def _scan_index(self) -> Tuple[Dict[int, Set[str]], Dict[int, Set[str]]]:
        groups: Dict[int, Set[str]] = {}
        users: Dict[int, Set[str]] = {}
        for group_id, sub in self._groups.items():
            for uid in sub.entity_ids:
                groups.setdefault(uid, set()).add(group_id)
        for user_id, sub in self._users.items():
            for uid in sub.entity_ids:
                users.setdefault(uid, set()).add(user_id)
        return groups, users

    @staticmethod
    def _index_add(index: Dict[int, Set[str]], uid: int, subscriber_id: str) -> None:
        index.setdefault(uid, set()).add(subscriber_id)

    @staticmethod
    def _index_discard(index: Dict[int, Set[str]], uid: int, subscriber_id: str) -> None:
        row = index.get(uid)
        if row is None:
            return
        row.discard(subscriber_id)
        if not row:
            del index[uid]

    def _mark_tracked(self, uid: int) -> None:
        """Start a new tracking period if ``uid`` has no subscriber yet."""
        if uid not in self._group_index and uid not in self._user_index:
            self._tracking_counter += 1
            self._tracking[uid] = self._tracking_counter

    def _drop_tracking_if_unsubscribed(self, uid: int) -> None:
        if uid not in self._group_index and uid not in self._user_index:
            self._tracking.pop(uid, None)

    def verify_index(self) -> None:
        """Check the reverse index against a full scan of the subscriptions.

        Raises:
            StoreInvariantError: If any index row differs from the scan
        """
        groups, users = self._scan_index()
        if groups != self._group_index or users != self._user_index:
            raise StoreInvariantError(
                "Reverse index diverged from subscriptions: "
                f"groups={self._group_index!r} expected={groups!r}, "
                f"users={self._user_index!r} expected={users!r}"
            )
        for uid in set(groups) | set(users):
            if uid not in self._entities:
                raise StoreInvariantError(f"Subscription references missing streamer {uid}")

    def _after_mutation(self) -> None:
        if self.strict:
            self.verify_index()

    # Streamers

    async def upsert_entity(self, entity: Entity) -> None:
        """Insert or replace streamer metadata. Subscriptions are not touched."""
        async with self._lock:
            entity.updated_at = time.time()
            self._entities[entity.uid] = entity
            self._save_entities()

    async def update_entity(self, entity: Entity) -> bool:
        """Replace streamer metadata only if the streamer is still stored.

        Returns:
            False if the streamer was removed in the meantime
        """
        async with self._lock:
            if entity.uid not in self._entities:
                return False
            entity.updated_at = time.time()
            self._entities[entity.uid] = entity
            self._save_entities()
            return True

    async def get_entity(self, uid: int) -> Optional[Entity]:
        async with self._lock:
            return self._entities.get(uid)

    async def get_entity_by_room(self, room_id: int) -> Optional[Entity]:
        async with self._lock:
            for entity in self._entities.values():
                if entity.room_id == room_id:
                    return entity
            return None

    async def list_entities(self) -> List[Entity]:
        async with self._lock:
            return list(self._entities.values())

    async def remove_entity(self, uid: int) -> bool:
        """Delete a streamer and purge it from every subscription.

        The purge and the index cleanup happen under the same lock as the
        deletion, so no reader sees the streamer gone while still subscribed.

        Returns:
            False if the streamer did not exist
        """
        async with self._lock:
            if uid not in self._entities:
                return False

            for group_id in self._group_index.pop(uid, set()):
                self._groups[group_id].entity_ids.remove(uid)
            for user_id in self._user_index.pop(uid, set()):
                self._users[user_id].entity_ids.remove(uid)

            del self._entities[uid]
            self._tracking.pop(uid, None)
            self._after_mutation()

            self._save_groups()
            self._save_users()
            self._save_entities()

        logger.info("Removed streamer", uid=uid)
        return True

    # Group subscriptions

    def _get_or_create_group(self, group_id: str) -> GroupSubscription:
        sub = self._groups.get(group_id)
        if sub is None:
            sub = GroupSubscription(group_id=group_id)
            self._groups[group_id] = sub
        return sub

    async def get_group(self, group_id: str) -> Optional[GroupSubscription]:
        async with self._lock:
            return self._groups.get(group_id)

    async def subscribe_group(self, group_id: str, uid: int) -> bool:
        """Subscribe a group to a streamer.

        Args:
            group_id: Group identifier
            uid: Streamer uid

        Returns:
            True if subscribed, False if the group already held the streamer

        Raises:
            EntityNotFound: If the streamer has no stored record
        """
        async with self._lock:
            if uid not in self._entities:
                raise EntityNotFound(uid)

            sub = self._get_or_create_group(group_id)
            if uid in sub.entity_ids:
                return False

            sub.entity_ids.append(uid)
            self._mark_tracked(uid)
            self._index_add(self._group_index, uid, group_id)
            self._after_mutation()
            self._save_groups()

        logger.info("Group subscribed", group_id=group_id, uid=uid)
        return True

    async def unsubscribe_group(self, group_id: str, uid: int) -> bool:
        """Remove a streamer from a group's list. False if it was not subscribed."""
        async with self._lock:
            sub = self._groups.get(group_id)
            if sub is None or uid not in sub.entity_ids:
                return False

            sub.entity_ids.remove(uid)
            self._index_discard(self._group_index, uid, group_id)
            self._drop_tracking_if_unsubscribed(uid)
            self._after_mutation()
            self._save_groups()

        logger.info("Group unsubscribed", group_id=group_id, uid=uid)
        return True

    async def set_group_flag(self, group_id: str, flag: str, value: bool) -> None:
        """Set ``mention_all`` or ``enabled`` for a group, creating it if needed.

        Raises:
            ValueError: For an unknown flag name
        """
        if flag not in GROUP_FLAGS:
            raise ValueError(f"Unknown group flag '{flag}', expected one of {GROUP_FLAGS}")

        async with self._lock:
            sub = self._get_or_create_group(group_id)
            setattr(sub, flag, bool(value))
            self._save_groups()

        logger.info("Group flag updated", group_id=group_id, flag=flag, value=bool(value))

    async def set_group_template(self, group_id: str, template: Optional[str]) -> None:
        """Set or clear (``None``) a group's message template override."""
        async with self._lock:
            sub = self._get_or_create_group(group_id)
            sub.template = template or None
            self._save_groups()

    async def remove_group(self, group_id: str) -> bool:
        """Delete a group record together with all of its subscriptions."""
        async with self._lock:
            sub = self._groups.pop(group_id, None)
            if sub is None:
                return False

            for uid in sub.entity_ids:
                self._index_discard(self._group_index, uid, group_id)
                self._drop_tracking_if_unsubscribed(uid)
            self._after_mutation()
            self._save_groups()

        logger.info("Removed group", group_id=group_id)
        return True

    # User subscriptions

    async def subscribe_user(self, user_id: str, uid: int) -> bool:
        """Subscribe a user to a streamer for private delivery.

        Raises:
            EntityNotFound: If the streamer has no stored record
        """
        async with self._lock:
            if uid not in self._entities:
                raise EntityNotFound(uid)

            sub = self._users.get(user_id)
            if sub is None:
                sub = UserSubscription(user_id=user_id)
                self._users[user_id] = sub
            if uid in sub.entity_ids:
                return False

            sub.entity_ids.append(uid)
            self._mark_tracked(uid)
            self._index_add(self._user_index, uid, user_id)
            self._after_mutation()
            self._save_users()

        logger.info("User subscribed", user_id=user_id, uid=uid)
        return True

    async def unsubscribe_user(self, user_id: str, uid: int) -> bool:
        async with self._lock:
            sub = self._users.get(user_id)
            if sub is None or uid not in sub.entity_ids:
                return False

            sub.entity_ids.remove(uid)
            self._index_discard(self._user_index, uid, user_id)
            self._drop_tracking_if_unsubscribed(uid)
            self._after_mutation()
            self._save_users()

        logger.info("User unsubscribed", user_id=user_id, uid=uid)
        return True

    # Queries

    async def list_subscribed_entities(self, kind: SubscriberKind, subscriber_id: str) -> List[Entity]:
        """Streamers held by a subscriber, in subscription order."""
        async with self._lock:
            if kind is SubscriberKind.GROUP:
                sub = self._groups.get(subscriber_id)
            else:
                sub = self._users.get(subscriber_id)
            if sub is None:
                return []
            return [self._entities[uid] for uid in sub.entity_ids if uid in self._entities]

    async def subscribers_of(self, uid: int) -> Tuple[Set[str], Set[str]]:
        """Fan-out query: enabled group ids and user ids subscribed to a streamer."""
        async with self._lock:
            groups = {
                group_id
                for group_id in self._group_index.get(uid, ())
                if self._groups[group_id].enabled
            }
            return groups, set(self._user_index.get(uid, ()))

    async def indexed_subscribers(self, uid: int) -> Tuple[Set[str], Set[str]]:
        """Raw reverse index row, including groups with notifications disabled."""
        async with self._lock:
            return set(self._group_index.get(uid, ())), set(self._user_index.get(uid, ()))

    async def has_any_subscriber(self, uid: int) -> bool:
        async with self._lock:
            return uid in self._group_index or uid in self._user_index

    async def tracking_generation(self, uid: int) -> int:
        """Identifier of the streamer's current tracking period.

        A new value is assigned whenever a streamer without subscribers gains
        one, so state cached during an earlier period can be told apart.
        Streamers tracked since ``load()`` report 0.
        """
        async with self._lock:
            return self._tracking.get(uid, 0)

    async def all_tracked_entity_ids(self) -> Set[int]:
        """Streamers with at least one group or user subscriber."""
        async with self._lock:
            return set(self._group_index) | set(self._user_index)

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        return {
            "streamers": len(self._entities),
            "groups": len(self._groups),
            "users": len(self._users),
            "group_subscriptions": sum(len(s.entity_ids) for s in self._groups.values()),
            "user_subscriptions": sum(len(s.entity_ids) for s in self._users.values()),
        }
