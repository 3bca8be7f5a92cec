"""Message segments, delivery results and the transport contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..storage.models import SubscriberKind


class SegmentType(Enum):
    """Typed message fragments understood by the transport."""

    TEXT = "text"
    IMAGE = "image"
    AT_ALL = "at_all"


@dataclass(frozen=True)
class MessageSegment:
    """One fragment of an outgoing message."""

    type: SegmentType
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def text(cls, text: str) -> "MessageSegment":
        return cls(SegmentType.TEXT, {"text": text})

    @classmethod
    def image(cls, url: str) -> "MessageSegment":
        return cls(SegmentType.IMAGE, {"url": url})

    @classmethod
    def at_all(cls) -> "MessageSegment":
        return cls(SegmentType.AT_ALL)


class DeliveryStatus(Enum):
    """Status of a single delivery attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class DeliveryResult:
    """Outcome of delivering one event to one recipient."""

    kind: SubscriberKind
    recipient_id: str
    status: DeliveryStatus
    message: str = ""
    execution_time_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS


class Transport(ABC):
    """Sends messages to chat groups and users."""

    @abstractmethod
    async def deliver(
        self,
        kind: SubscriberKind,
        recipient_id: str,
        segments: list[MessageSegment],
    ) -> None:
        """Deliver a message.

        Args:
            kind: Group or private delivery
            recipient_id: Group id or user id
            segments: Ordered message fragments

        Raises:
            DeliveryFailure: If the message was not accepted
        """

    async def close(self) -> None:
        """Release network resources."""
