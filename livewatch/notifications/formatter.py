"""Build chat messages from detected events."""

from typing import Dict, List, Optional

import structlog

from ..events.feed import FeedItem, ForwardItem, ImageItem, TextItem, VideoItem
from ..events.models import Event, LiveEnded, LiveStarted, NewFeedItem
from ..storage.models import Entity, GroupSubscription
from .base import MessageSegment


logger = structlog.get_logger(__name__)

MAX_FEED_IMAGES = 3
MAX_SUMMARY_LENGTH = 200


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def format_duration(seconds: Optional[int]) -> str:
    """Human readable duration, e.g. ``2h 5m 10s``."""
    if seconds is None or seconds < 0:
        return "unknown"

    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _truncate(text: str, limit: int = MAX_SUMMARY_LENGTH) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _area(entity: Entity) -> str:
    if entity.parent_area_name and entity.area_name:
        return f"{entity.parent_area_name} > {entity.area_name}"
    return entity.area_name or entity.parent_area_name


class MessageFormatter:
    """Turns events into message segments.

    A group's ``template`` replaces the default live-start text. Templates use
    ``str.format`` fields: ``{name}``, ``{title}``, ``{url}``, ``{area}``,
    ``{uid}``, ``{room_id}``, ``{online}``. Unknown fields are left as written.
    """

    def build(self, event: Event, group: Optional[GroupSubscription] = None) -> List[MessageSegment]:
        """Build the message for one recipient.

        Args:
            event: Detected event
            group: Recipient group, or None for private delivery

        Returns:
            Ordered segments; an at-all marker comes first when the group asks for it
        """
        if isinstance(event, LiveStarted):
            template = group.template if group else None
            segments = self._live_started(event.entity, template)
        elif isinstance(event, LiveEnded):
            segments = self._live_ended(event)
        elif isinstance(event, NewFeedItem):
            segments = self._feed_item(event.entity, event.item)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")

        if group is not None and group.mention_all:
            segments.insert(0, MessageSegment.at_all())

        return segments

    def template_fields(self, entity: Entity) -> Dict[str, str]:
        return {
            "name": entity.name,
            "title": entity.title,
            "url": entity.room_url,
            "area": _area(entity),
            "uid": str(entity.uid),
            "room_id": str(entity.room_id),
            "online": str(entity.online),
        }

    def _live_started(self, entity: Entity, template: Optional[str]) -> List[MessageSegment]:
        text = None
        if template:
            try:
                text = template.format_map(_KeepMissing(self.template_fields(entity)))
            except (KeyError, TypeError, ValueError, IndexError, AttributeError) as e:
                logger.warning("Invalid push template, using default", template=template, error=str(e))

        if text is None:
            lines = [f"🎉 {entity.name} is live!", ""]
            if entity.title:
                lines.append(f"📺 {entity.title}")
            area = _area(entity)
            if area:
                lines.append(f"🏷️ {area}")
            if entity.online:
                lines.append(f"👥 {entity.online} watching")
            lines.append(f"🔗 {entity.room_url}")
            text = "\n".join(lines)

        segments = [MessageSegment.text(text)]
        if entity.cover_url:
            segments.append(MessageSegment.image(entity.cover_url))
        return segments

    def _live_ended(self, event: LiveEnded) -> List[MessageSegment]:
        text = "\n".join(
            [
                f"👋 {event.entity.name} ended the stream",
                "",
                f"⏱️ Duration: {format_duration(event.duration_seconds)}",
            ]
        )
        return [MessageSegment.text(text)]

    def _feed_item(self, entity: Entity, item: FeedItem) -> List[MessageSegment]:
        name = entity.name or item.author_name

        if isinstance(item, VideoItem):
            lines = [f"🎬 {name} posted a video", "", item.title]
            if item.duration_text:
                lines.append(f"⏱️ {item.duration_text}")
            lines.append(f"🔗 {item.video_url or item.url}")
            images = [item.cover_url] if item.cover_url else []
        elif isinstance(item, ImageItem):
            lines = [f"🖼️ {name} posted", "", _truncate(item.text), f"🔗 {item.url}"]
            images = item.image_urls[:MAX_FEED_IMAGES]
        elif isinstance(item, ForwardItem):
            lines = [f"🔁 {name} reposted", ""]
            if item.text:
                lines.append(_truncate(item.text))
            if item.original is not None:
                original_author = item.original.author_name or "unknown"
                lines.append(f"↪ {original_author}: {_truncate(item.original.summary)}")
            else:
                lines.append("↪ original post unavailable")
            lines.append(f"🔗 {item.url}")
            images = [item.media_url] if item.media_url else []
        elif isinstance(item, TextItem):
            lines = [f"📝 {name} posted", "", _truncate(item.text), f"🔗 {item.url}"]
            images = []
        else:
            raise TypeError(f"Unsupported feed item type: {type(item).__name__}")

        segments = [MessageSegment.text("\n".join(lines))]
        segments.extend(MessageSegment.image(url) for url in images)
        return segments
