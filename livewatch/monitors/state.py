"""Change detection for streamer status and feed items."""

import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from ..events.feed import FeedItem
from ..storage.models import LiveStatus
from ..storage.persistence import Persistence


logger = structlog.get_logger(__name__)

STATUS_CACHE_DATASET = "status-cache"
FEED_CACHE_DATASET = "feed-cache"


class Transition(Enum):
    """Classification of a status observation against the previous snapshot."""

    STARTED = "started"
    ENDED = "ended"
    UNCHANGED = "unchanged"


@dataclass
class StatusSnapshot:
    """Last observed status of a streamer."""

    status: LiveStatus
    since: int
    checked_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {"status": int(self.status), "since": self.since, "checked_at": self.checked_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusSnapshot":
        return cls(
            status=LiveStatus.parse(data["status"]),
            since=int(data.get("since", 0)),
            checked_at=float(data.get("checked_at", 0.0)),
        )


@dataclass
class FeedWatermark:
    """Feed items published at or before ``watermark`` count as delivered."""

    watermark: float
    checked_at: float


class StatusCache:
    """Per-streamer status snapshots used to classify live transitions.

    Snapshots are persisted so a restart resumes from the last known status
    instead of treating every live streamer as having just gone live.
    """

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence
        self._snapshots: Dict[int, StatusSnapshot] = {}

        logger.info("Initialized StatusCache")

    def load(self) -> None:
        self._snapshots.clear()
        for key, data in self.persistence.load(STATUS_CACHE_DATASET, {}).items():
            try:
                self._snapshots[int(key)] = StatusSnapshot.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed status snapshot", uid=key, error=str(e))

    def save(self) -> None:
        self.persistence.save(
            STATUS_CACHE_DATASET,
            {str(uid): snapshot.to_dict() for uid, snapshot in self._snapshots.items()},
        )

    def get(self, uid: int) -> Optional[StatusSnapshot]:
        return self._snapshots.get(uid)

    def forget(self, uid: int) -> bool:
        return self._snapshots.pop(uid, None) is not None

    def retain(self, uids: Set[int]) -> int:
        """Drop snapshots of streamers outside ``uids``. Returns the number dropped."""
        stale = [uid for uid in self._snapshots if uid not in uids]
        for uid in stale:
            del self._snapshots[uid]
        return len(stale)

    def classify(
        self,
        uid: int,
        new_status: LiveStatus,
        new_since: int = 0,
        now: Optional[float] = None,
    ) -> Transition:
        """Classify an observation and record it as the new snapshot.

        The first observation of a streamer only seeds the snapshot, even when
        the streamer is already live.

        Args:
            uid: Streamer uid
            new_status: Status reported by the poll
            new_since: Remote timestamp the status began, 0 if unknown
            now: Observation time, defaults to the current time

        Returns:
            STARTED, ENDED or UNCHANGED
        """
        now = time.time() if now is None else now
        previous = self._snapshots.get(uid)

        if previous is None:
            self._snapshots[uid] = StatusSnapshot(
                status=new_status,
                since=new_since or int(now),
                checked_at=now,
            )
            logger.debug("Seeded status snapshot", uid=uid, status=new_status.name)
            return Transition.UNCHANGED

        was_live = previous.status is LiveStatus.LIVE
        is_live = new_status is LiveStatus.LIVE

        if not was_live and is_live:
            transition = Transition.STARTED
        elif was_live and not is_live:
            transition = Transition.ENDED
        else:
            transition = Transition.UNCHANGED

        since = previous.since
        if new_status is not previous.status:
            since = new_since or int(now)

        self._snapshots[uid] = StatusSnapshot(status=new_status, since=since, checked_at=now)

        if transition is not Transition.UNCHANGED:
            logger.info(
                "Live status transition detected",
                uid=uid,
                transition=transition.value,
                old_status=previous.status.name,
                new_status=new_status.name,
            )

        return transition

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tracked": len(self._snapshots),
            "live": sum(1 for s in self._snapshots.values() if s.status is LiveStatus.LIVE),
        }


def new_items_since(items: Iterable[FeedItem], last_seen: float) -> List[FeedItem]:
    """Items published strictly after ``last_seen``, oldest first."""
    fresh = [item for item in items if item.published_at > last_seen]
    fresh.sort(key=lambda item: item.published_at)
    return fresh


class FeedCache:
    """Per-streamer feed watermarks.

    After each poll the watermark moves to the poll time rather than to the
    newest item timestamp. Items stamped ahead of the poll time (remote clock
    skew) push it further, so an item already seen never exceeds the watermark
    again.
    """

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence
        self._watermarks: Dict[int, FeedWatermark] = {}

        logger.info("Initialized FeedCache")

    def load(self) -> None:
        self._watermarks.clear()
        for key, data in self.persistence.load(FEED_CACHE_DATASET, {}).items():
            try:
                self._watermarks[int(key)] = FeedWatermark(
                    watermark=float(data["watermark"]),
                    checked_at=float(data.get("checked_at", 0.0)),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed feed watermark", uid=key, error=str(e))

    def save(self) -> None:
        self.persistence.save(
            FEED_CACHE_DATASET,
            {str(uid): asdict(mark) for uid, mark in self._watermarks.items()},
        )

    def get(self, uid: int) -> Optional[FeedWatermark]:
        return self._watermarks.get(uid)

    def forget(self, uid: int) -> bool:
        return self._watermarks.pop(uid, None) is not None

    def retain(self, uids: Set[int]) -> int:
        stale = [uid for uid in self._watermarks if uid not in uids]
        for uid in stale:
            del self._watermarks[uid]
        return len(stale)

    def collect(self, uid: int, items: Iterable[FeedItem], now: float) -> List[FeedItem]:
        """Return unseen items and advance the watermark.

        The first poll for a streamer seeds the watermark at ``now``, or at the
        newest item if that is later, and returns nothing.

        Args:
            uid: Streamer uid
            items: Items returned by the feed fetch
            now: Poll time, captured before the fetch started
        """
        items = list(items)
        newest = max((item.published_at for item in items), default=0)

        mark = self._watermarks.get(uid)
        if mark is None:
            watermark = max(now, newest)
            self._watermarks[uid] = FeedWatermark(watermark=watermark, checked_at=now)
            logger.debug("Seeded feed watermark", uid=uid, watermark=watermark)
            return []

        fresh = new_items_since(items, mark.watermark)
        self._watermarks[uid] = FeedWatermark(watermark=max(now, mark.watermark, newest), checked_at=now)

        if fresh:
            logger.info(
                "New feed items detected",
                uid=uid,
                count=len(fresh),
                item_ids=[item.item_id for item in fresh],
            )

        return fresh

    def get_stats(self) -> Dict[str, Any]:
        return {"tracked": len(self._watermarks)}
