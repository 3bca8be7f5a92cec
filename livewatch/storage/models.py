"""Stored records: streamers and their group/user subscriptions."""

from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class LiveStatus(IntEnum):
    """Live room status as reported by the remote API."""

    OFFLINE = 0
    LIVE = 1
    ROUND = 2  # carousel / replay of past streams

    @classmethod
    def parse(cls, value: Any) -> "LiveStatus":
        """Map a raw status code to a member, treating unknown codes as offline."""
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.OFFLINE


class SubscriberKind(Enum):
    """Namespace a subscriber id belongs to."""

    GROUP = "group"
    USER = "user"


@dataclass
class Entity:
    """A tracked streamer."""

    uid: int
    room_id: int
    name: str
    status: LiveStatus = LiveStatus.OFFLINE
    status_since: int = 0
    title: str = ""
    avatar_url: str = ""
    cover_url: str = ""
    area_name: str = ""
    parent_area_name: str = ""
    online: int = 0
    updated_at: float = 0.0
    polled_at: float = 0.0  # last live status poll, 0 if never polled

    @property
    def is_live(self) -> bool:
        return self.status is LiveStatus.LIVE

    @property
    def room_url(self) -> str:
        return f"https://live.bilibili.com/{self.room_id}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = int(self.status)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        return cls(
            uid=int(data["uid"]),
            room_id=int(data.get("room_id", 0)),
            name=str(data.get("name", "")),
            status=LiveStatus.parse(data.get("status", 0)),
            status_since=int(data.get("status_since", 0)),
            title=data.get("title", ""),
            avatar_url=data.get("avatar_url", ""),
            cover_url=data.get("cover_url", ""),
            area_name=data.get("area_name", ""),
            parent_area_name=data.get("parent_area_name", ""),
            online=int(data.get("online", 0)),
            updated_at=float(data.get("updated_at", 0.0)),
            polled_at=float(data.get("polled_at", 0.0)),
        )


@dataclass
class GroupSubscription:
    """Per-group subscription list and delivery preferences."""

    group_id: str
    entity_ids: List[int] = field(default_factory=list)
    mention_all: bool = False
    enabled: bool = True
    template: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, group_id: str, data: Dict[str, Any]) -> "GroupSubscription":
        return cls(
            group_id=group_id,
            entity_ids=[int(uid) for uid in data["entity_ids"]],
            mention_all=bool(data.get("mention_all", False)),
            enabled=bool(data.get("enabled", True)),
            template=data.get("template"),
        )


@dataclass
class UserSubscription:
    """Private subscription list of a single user."""

    user_id: str
    entity_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "UserSubscription":
        return cls(
            user_id=user_id,
            entity_ids=[int(uid) for uid in data["entity_ids"]],
        )
