"""Bilibili API client for live room status and space feeds."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
import structlog

from ..events.feed import FeedItem, ForwardItem, ImageItem, TextItem, VideoItem
from ..exceptions import FetchFailure
from ..storage.models import LiveStatus
from ..utils.rate_limiter import RateLimiter
from .fetcher import RoomStatus, StateFetcher


logger = structlog.get_logger(__name__)

STATUS_PATH = "/room/v1/Room/get_status_info_by_uids"
FEED_PATH = "/x/polymer/web-dynamic/desktop/v1/feed/space"


def _absolute_url(url: str) -> str:
    if url.startswith("//"):
        return f"https:{url}"
    return url


def parse_room_status(raw: Dict[str, Any]) -> RoomStatus:
    """Convert one entry of the batch status response into a RoomStatus."""
    return RoomStatus(
        uid=int(raw["uid"]),
        room_id=int(raw.get("room_id", 0)),
        name=raw.get("uname", ""),
        status=LiveStatus.parse(raw.get("live_status", 0)),
        status_since=int(raw.get("live_time", 0) or 0),
        title=raw.get("title", ""),
        cover_url=raw.get("cover_from_user", ""),
        avatar_url=raw.get("face", ""),
        area_name=raw.get("area_v2_name") or raw.get("area_name", ""),
        parent_area_name=raw.get("area_v2_parent_name", ""),
        online=int(raw.get("online", 0) or 0),
    )


def _get_module(modules: List[Dict[str, Any]], module_type: str) -> Optional[Dict[str, Any]]:
    for module in modules:
        if module.get("module_type") == module_type:
            return module
    return None


def parse_feed_item(raw: Dict[str, Any]) -> Optional[FeedItem]:
    """Parse one feed item of the desktop space feed.

    Returns:
        The parsed item, or None when the payload has no author module
    """
    modules = raw.get("modules") or []

    author_module = _get_module(modules, "MODULE_TYPE_AUTHOR")
    if not author_module or "module_author" not in author_module:
        logger.warning("Feed item has no author module", item_id=raw.get("id_str"))
        return None
    author = author_module["module_author"]

    desc_module = _get_module(modules, "MODULE_TYPE_DESC")
    text = ""
    if desc_module and desc_module.get("module_desc"):
        text = desc_module["module_desc"].get("text", "")

    common = {
        "item_id": str(raw.get("id_str", "")),
        "published_at": int(author.get("pub_ts", 0) or 0),
        "author_name": author.get("user", {}).get("name", ""),
        "text": text,
    }

    dynamic_module = _get_module(modules, "MODULE_TYPE_DYNAMIC")
    dynamic = (dynamic_module or {}).get("module_dynamic") or {}
    dynamic_type = dynamic.get("type")

    if dynamic_type == "MDL_DYN_TYPE_ARCHIVE" and dynamic.get("dyn_archive"):
        archive = dynamic["dyn_archive"]
        return VideoItem(
            **common,
            title=archive.get("title", ""),
            cover_url=archive.get("cover", ""),
            video_url=_absolute_url(archive.get("jump_url", "")),
            duration_text=archive.get("duration_text", ""),
        )
    if dynamic_type == "MDL_DYN_TYPE_DRAW" and dynamic.get("dyn_draw"):
        return ImageItem(
            **common,
            image_urls=[image["src"] for image in dynamic["dyn_draw"].get("items", []) if image.get("src")],
        )
    if dynamic_type == "MDL_DYN_TYPE_FORWARD":
        original_raw = (dynamic.get("dyn_forward") or {}).get("item")
        original = parse_feed_item(original_raw) if original_raw else None
        return ForwardItem(**common, original=original)

    return TextItem(**common)


class BilibiliClient(StateFetcher):
    """Async HTTP client for the Bilibili live and feed APIs."""

    def __init__(
        self,
        live_api_url: str = "https://api.live.bilibili.com",
        feed_api_url: str = "https://api.bilibili.com",
        timeout: int = 10,
        max_retries: int = 2,
        user_agent: str = "livewatch/0.1.0",
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Initialize the client.

        Args:
            live_api_url: Base URL of the live room API
            feed_api_url: Base URL of the feed API
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            user_agent: User-Agent header value
            rate_limiter: Optional shared rate limiter
        """
        self.live_api_url = live_api_url.rstrip("/")
        self.feed_api_url = feed_api_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "Initialized Bilibili client",
            live_api_url=self.live_api_url,
            feed_api_url=self.feed_api_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )
        return self._session

    async def _get_json(self, scope: str, url: str, params: Any) -> Dict[str, Any]:
        """GET a JSON API endpoint with retry logic.

        Args:
            scope: Rate limit scope
            url: Endpoint URL
            params: Query parameters

        Returns:
            The ``data`` member of a successful response

        Raises:
            FetchFailure: On API errors or when all retries failed
        """
        if self.rate_limiter and not await self.rate_limiter.acquire(scope, timeout=self.timeout):
            raise FetchFailure(f"Rate limit exceeded for {scope} API")

        session = await self._get_session()

        for attempt in range(self.max_retries + 1):
            try:
                async with session.get(url, params=params) as response:
                    response.raise_for_status()
                    body = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    "Remote API request failed",
                    url=url,
                    attempt=attempt + 1,
                    error=str(e) or type(e).__name__,
                    will_retry=attempt < self.max_retries,
                )
                if attempt == self.max_retries:
                    raise FetchFailure(f"Request to {url} failed: {e!r}") from e

                # Exponential backoff
                await asyncio.sleep(2 ** attempt)
                continue

            if not isinstance(body, dict) or body.get("code") != 0:
                code = body.get("code") if isinstance(body, dict) else None
                message = body.get("message") if isinstance(body, dict) else None
                raise FetchFailure(f"API error from {url}: code={code} message={message}")

            return body.get("data") or {}

        raise FetchFailure(f"Request to {url} failed after all retries")

    async def fetch_status(self, uids: Iterable[int]) -> Dict[int, RoomStatus]:
        uid_list = sorted(set(uids))
        if not uid_list:
            return {}

        data = await self._get_json(
            "live",
            f"{self.live_api_url}{STATUS_PATH}",
            [("uids[]", str(uid)) for uid in uid_list],
        )

        result: Dict[int, RoomStatus] = {}
        for uid in uid_list:
            raw = data.get(str(uid))
            if not raw:
                continue
            try:
                result[uid] = parse_room_status(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed room status", uid=uid, error=str(e))

        logger.debug("Fetched room status", requested=len(uid_list), received=len(result))
        return result

    async def fetch_feed_items(self, uid: int) -> List[FeedItem]:
        data = await self._get_json(
            "feed",
            f"{self.feed_api_url}{FEED_PATH}",
            {"host_mid": str(uid)},
        )

        items: List[FeedItem] = []
        for raw in data.get("items") or []:
            try:
                item = parse_feed_item(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Failed to parse feed item", uid=uid, item_id=raw.get("id_str"), error=str(e))
                continue
            if item is not None:
                items.append(item)

        logger.debug("Fetched feed items", uid=uid, count=len(items))
        return items

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

        logger.debug("Closed Bilibili client")
