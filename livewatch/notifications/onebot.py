"""OneBot v11 HTTP transport."""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from ..exceptions import DeliveryFailure
from ..storage.models import SubscriberKind
from .base import MessageSegment, SegmentType, Transport


logger = structlog.get_logger(__name__)


def to_onebot_segments(segments: List[MessageSegment]) -> List[Dict[str, Any]]:
    """Convert message segments to OneBot v11 array message format."""
    converted: List[Dict[str, Any]] = []
    for segment in segments:
        if segment.type is SegmentType.TEXT:
            converted.append({"type": "text", "data": {"text": segment.data["text"]}})
        elif segment.type is SegmentType.IMAGE:
            url = segment.data["url"]
            converted.append({"type": "image", "data": {"file": url, "url": url}})
        elif segment.type is SegmentType.AT_ALL:
            converted.append({"type": "at", "data": {"qq": "all"}})
        else:
            raise ValueError(f"Unsupported segment type: {segment.type}")
    return converted


class OneBotTransport(Transport):
    """Sends messages through a OneBot v11 implementation's HTTP API."""

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: int = 10,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Base URL of the OneBot HTTP API
            access_token: Optional bearer token
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info("Initialized OneBot transport", base_url=self.base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=headers,
            )
        return self._session

    async def deliver(
        self,
        kind: SubscriberKind,
        recipient_id: str,
        segments: List[MessageSegment],
    ) -> None:
        if kind is SubscriberKind.GROUP:
            action = "send_group_msg"
            payload: Dict[str, Any] = {"group_id": int(recipient_id)}
        else:
            action = "send_private_msg"
            payload = {"user_id": int(recipient_id)}
        payload["message"] = to_onebot_segments(segments)

        session = await self._get_session()
        url = f"{self.base_url}/{action}"

        try:
            async with session.post(url, json=payload) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise DeliveryFailure(f"{action} returned HTTP {response.status}: {body[:200]}")
                reply = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryFailure(f"HTTP error calling {action}: {e}") from e

        if not isinstance(reply, dict) or reply.get("status") != "ok":
            retcode = reply.get("retcode") if isinstance(reply, dict) else None
            raise DeliveryFailure(f"{action} rejected: retcode={retcode}")

        logger.debug(
            "OneBot message sent",
            action=action,
            recipient=recipient_id,
            message_id=(reply.get("data") or {}).get("message_id"),
        )

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
