"""External state fetcher contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..events.feed import FeedItem
from ..storage.models import Entity, LiveStatus


@dataclass
class RoomStatus:
    """Current live room state of one streamer."""

    uid: int
    room_id: int
    name: str
    status: LiveStatus
    status_since: int = 0
    title: str = ""
    cover_url: str = ""
    avatar_url: str = ""
    area_name: str = ""
    parent_area_name: str = ""
    online: int = 0

    def apply_to(self, entity: Entity | None = None) -> Entity:
        """Build an updated streamer record from this status."""
        return Entity(
            uid=self.uid,
            room_id=self.room_id or (entity.room_id if entity else 0),
            name=self.name or (entity.name if entity else ""),
            status=self.status,
            status_since=self.status_since,
            title=self.title,
            avatar_url=self.avatar_url,
            cover_url=self.cover_url,
            area_name=self.area_name,
            parent_area_name=self.parent_area_name,
            online=self.online,
        )


class StateFetcher(ABC):
    """Source of current streamer state."""

    @abstractmethod
    async def fetch_status(self, uids: Iterable[int]) -> Dict[int, RoomStatus]:
        """Fetch live room status for the given streamers.

        Missing uids in the result are valid and mean "no data this time".

        Raises:
            FetchFailure: If the request as a whole failed
        """

    @abstractmethod
    async def fetch_feed_items(self, uid: int) -> List[FeedItem]:
        """Fetch the most recent feed items of one streamer.

        Raises:
            FetchFailure: If the request failed
        """

    async def close(self) -> None:
        """Release network resources."""
