"""Feed item variants published by tracked streamers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, List, Optional


class FeedItemKind(Enum):
    """Closed set of feed item kinds."""

    VIDEO = "video"
    IMAGES = "images"
    TEXT = "text"
    FORWARD = "forward"


@dataclass
class FeedItem:
    """Fields shared by every feed item kind."""

    kind: ClassVar[FeedItemKind]

    item_id: str
    published_at: int
    author_name: str = ""
    text: str = ""

    @property
    def url(self) -> str:
        return f"https://t.bilibili.com/{self.item_id}"

    @property
    def summary(self) -> str:
        return self.text

    @property
    def media_url(self) -> Optional[str]:
        return None


@dataclass
class VideoItem(FeedItem):
    kind: ClassVar[FeedItemKind] = FeedItemKind.VIDEO

    title: str = ""
    cover_url: str = ""
    video_url: str = ""
    duration_text: str = ""

    @property
    def summary(self) -> str:
        return self.title or self.text

    @property
    def media_url(self) -> Optional[str]:
        return self.cover_url or None


@dataclass
class ImageItem(FeedItem):
    kind: ClassVar[FeedItemKind] = FeedItemKind.IMAGES

    image_urls: List[str] = field(default_factory=list)

    @property
    def media_url(self) -> Optional[str]:
        return self.image_urls[0] if self.image_urls else None


@dataclass
class TextItem(FeedItem):
    kind: ClassVar[FeedItemKind] = FeedItemKind.TEXT


@dataclass
class ForwardItem(FeedItem):
    """A repost. ``original`` is None when the reposted item is gone or unparseable."""

    kind: ClassVar[FeedItemKind] = FeedItemKind.FORWARD

    original: Optional[FeedItem] = None

    @property
    def media_url(self) -> Optional[str]:
        return self.original.media_url if self.original else None
