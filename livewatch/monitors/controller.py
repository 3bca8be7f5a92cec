"""Poll scheduling: live status and feed monitors plus the controller that owns them."""

import asyncio
import time
from typing import Any, Dict, Optional, Set

import structlog
from prometheus_client import Counter, Gauge, Histogram

from ..config import LivewatchSettings
from ..events.models import Event, LiveEnded, LiveStarted, NewFeedItem
from ..exceptions import EntityNotFound, FetchFailure, StoreInvariantError
from ..notifications.base import Transport
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.onebot import OneBotTransport
from ..storage.models import Entity
from ..storage.persistence import JsonFilePersistence, Persistence
from ..storage.subscriptions import SubscriptionStore
from ..utils.rate_limiter import RateLimiter
from .bilibili import BilibiliClient
from .fetcher import RoomStatus, StateFetcher
from .state import FeedCache, StatusCache, Transition

logger = structlog.get_logger(__name__)

# Prometheus metrics
POLLS_TOTAL = Counter(
    "livewatch_polls_total",
    "Total number of poll cycles",
    ["monitor", "status"],
)

POLL_DURATION = Histogram(
    "livewatch_poll_duration_seconds",
    "Time spent in a poll cycle",
    ["monitor"],
)

FETCH_FAILURES = Counter(
    "livewatch_fetch_failures_total",
    "Total number of failed external fetches",
    ["monitor", "reason"],
)

EVENTS_DETECTED = Counter(
    "livewatch_events_detected_total",
    "Total number of detected events",
    ["event"],
)

TRACKED_STREAMERS = Gauge(
    "livewatch_tracked_streamers", "Number of streamers with at least one subscriber"
)


class PollMonitor:
    """Recurring poll loop with a reentrancy guard.

    Subclasses implement ``_poll_and_process``. ``run_cycle`` refuses to start
    while a previous cycle is still running, so two cycles never write the
    same cache concurrently.
    """

    name = "poll"

    def __init__(
        self,
        store: SubscriptionStore,
        fetcher: StateFetcher,
        dispatcher: NotificationDispatcher,
        interval: float,
        fetch_timeout: float,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.interval = interval
        self.fetch_timeout = fetch_timeout

        self._monitor_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._cycle_running = False
        self._generations: Dict[int, int] = {}

        self.cycles_completed = 0
        self.last_cycle_at: float | None = None

        logger.info("Initialized monitor", monitor=self.name, interval=interval)

    @property
    def running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def start(self) -> None:
        """Start the polling loop."""
        if self._monitor_task is not None:
            logger.warning("Monitor already started", monitor=self.name)
            return

        self._stop_event.clear()
        self._monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info("Started monitor", monitor=self.name)

    async def stop(self, grace_period: float = 10) -> None:
        """Stop scheduling cycles and wait for the in-flight one.

        Args:
            grace_period: Seconds to wait before abandoning a running cycle
        """
        self._stop_event.set()

        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning("Abandoning in-flight poll cycle", monitor=self.name, grace_period=grace_period)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("Stopped monitor", monitor=self.name)

    async def _monitoring_loop(self) -> None:
        """Main monitoring loop."""
        while not self._stop_event.is_set():
            await self.run_cycle()

            # Wait for next poll interval
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                continue

        logger.info("Monitoring loop stopped", monitor=self.name)

    async def run_cycle(self) -> bool:
        """Run one poll cycle.

        Returns:
            False if a cycle was already running and this call did nothing
        """
        if self._cycle_running:
            logger.warning("Poll cycle already running, skipping", monitor=self.name)
            POLLS_TOTAL.labels(monitor=self.name, status="skipped").inc()
            return False

        self._cycle_running = True
        try:
            with POLL_DURATION.labels(monitor=self.name).time():
                await self._poll_and_process()
            POLLS_TOTAL.labels(monitor=self.name, status="success").inc()
        except StoreInvariantError:
            logger.critical("Subscription index corrupted", monitor=self.name)
            raise
        except Exception as e:
            logger.error("Poll cycle failed", monitor=self.name, error=str(e), error_type=type(e).__name__)
            POLLS_TOTAL.labels(monitor=self.name, status="error").inc()
        finally:
            self._cycle_running = False
            self.cycles_completed += 1
            self.last_cycle_at = time.time()

        return True

    async def _poll_and_process(self) -> None:
        raise NotImplementedError

    def _forget(self, uid: int) -> bool:
        raise NotImplementedError

    async def _discard_previous_period(self, uid: int) -> None:
        """Forget cached state left over from before the streamer was last re-subscribed."""
        generation = await self.store.tracking_generation(uid)
        if self._generations.get(uid, 0) == generation:
            return

        self._generations[uid] = generation
        if self._forget(uid):
            logger.info("Discarded state from an earlier tracking period", monitor=self.name, uid=uid)

    def _retain_generations(self, uids: Set[int]) -> None:
        for uid in [uid for uid in self._generations if uid not in uids]:
            del self._generations[uid]

    async def _dispatch(self, uid: int, event: Event) -> None:
        EVENTS_DETECTED.labels(event=event.name).inc()
        await self.dispatcher.notify(uid, event)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval": self.interval,
            "cycles_completed": self.cycles_completed,
            "last_cycle_at": self.last_cycle_at,
        }


class LiveMonitor(PollMonitor):
    """Polls live room status and dispatches start/end notifications."""

    name = "live"

    def __init__(self, *args: Any, status_cache: StatusCache, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.status_cache = status_cache

    async def _poll_and_process(self) -> None:
        uids = await self.store.all_tracked_entity_ids()
        TRACKED_STREAMERS.set(len(uids))
        self._retain_generations(uids)
        if self.status_cache.retain(uids):
            self.status_cache.save()
        if not uids:
            return

        try:
            statuses = await asyncio.wait_for(self.fetcher.fetch_status(uids), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Live status fetch timed out", streamers=len(uids), timeout=self.fetch_timeout)
            FETCH_FAILURES.labels(monitor=self.name, reason="timeout").inc()
            return
        except FetchFailure as e:
            logger.warning("Live status fetch failed", streamers=len(uids), error=str(e))
            FETCH_FAILURES.labels(monitor=self.name, reason="error").inc()
            return

        for uid in sorted(uids):
            status = statuses.get(uid)
            if status is None:
                logger.debug("No live status returned", uid=uid)
                continue

            try:
                await self._process_status(uid, status)
            except StoreInvariantError:
                raise
            except Exception as e:
                logger.error(
                    "Failed to process live status",
                    uid=uid,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self.status_cache.save()

    async def _process_status(self, uid: int, status: RoomStatus) -> None:
        entity = await self.store.get_entity(uid)
        if entity is None:
            return

        now = time.time()

        await self._discard_previous_period(uid)

        # A record no poll has seen yet is the last observation when no snapshot exists
        if self.status_cache.get(uid) is None and not entity.polled_at:
            self.status_cache.classify(uid, entity.status, entity.status_since, now=entity.updated_at or now)

        previous = self.status_cache.get(uid)
        transition = self.status_cache.classify(uid, status.status, status.status_since, now=now)

        updated = status.apply_to(entity)
        updated.polled_at = now
        if not await self.store.update_entity(updated):
            self.status_cache.forget(uid)
            return

        if transition is Transition.STARTED:
            await self._dispatch(uid, LiveStarted(entity=updated))
        elif transition is Transition.ENDED:
            duration = None
            if previous is not None and previous.since:
                duration = max(0, int(now - previous.since))
            await self._dispatch(uid, LiveEnded(entity=updated, duration_seconds=duration))

    def _forget(self, uid: int) -> bool:
        return self.status_cache.forget(uid)


class FeedMonitor(PollMonitor):
    """Polls streamer feeds and dispatches one notification per new item."""

    name = "feed"

    def __init__(self, *args: Any, feed_cache: FeedCache, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.feed_cache = feed_cache

    async def _poll_and_process(self) -> None:
        uids = await self.store.all_tracked_entity_ids()
        self._retain_generations(uids)
        if self.feed_cache.retain(uids):
            self.feed_cache.save()
        if not uids:
            return

        for uid in sorted(uids):
            try:
                await self._process_feed(uid)
            except StoreInvariantError:
                raise
            except (asyncio.TimeoutError, FetchFailure) as e:
                reason = "timeout" if isinstance(e, asyncio.TimeoutError) else "error"
                logger.warning("Feed fetch failed", uid=uid, reason=reason, error=str(e))
                FETCH_FAILURES.labels(monitor=self.name, reason=reason).inc()
            except Exception as e:
                logger.error(
                    "Failed to process feed",
                    uid=uid,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self.feed_cache.save()

    def _forget(self, uid: int) -> bool:
        return self.feed_cache.forget(uid)

    async def _process_feed(self, uid: int) -> None:
        polled_at = time.time()
        items = await asyncio.wait_for(self.fetcher.fetch_feed_items(uid), timeout=self.fetch_timeout)

        entity = await self.store.get_entity(uid)
        if entity is None:
            return

        await self._discard_previous_period(uid)
        for item in self.feed_cache.collect(uid, items, polled_at):
            await self._dispatch(uid, NewFeedItem(entity=entity, item=item))


class MonitoringController:
    """Owns the store, caches, dispatcher and both monitors."""

    def __init__(
        self,
        persistence: Persistence,
        fetcher: StateFetcher,
        transport: Transport,
        live_poll_interval: float = 10,
        feed_poll_interval: float = 60,
        fetch_timeout: float = 10,
        delivery_timeout: float = 10,
        shutdown_grace_period: float = 10,
        strict: bool = False,
    ) -> None:
        """Initialize the controller and load persisted state.

        Args:
            persistence: Dataset persistence backend
            fetcher: External state fetcher
            transport: Message transport
            live_poll_interval: Seconds between live status cycles
            feed_poll_interval: Seconds between feed cycles
            fetch_timeout: Upper bound for a single fetch in seconds
            delivery_timeout: Upper bound for a single delivery in seconds
            shutdown_grace_period: Seconds to wait for in-flight cycles on shutdown
            strict: Verify the reverse index after every store mutation
        """
        self.persistence = persistence
        self.fetcher = fetcher
        self.transport = transport
        self.fetch_timeout = fetch_timeout
        self.shutdown_grace_period = shutdown_grace_period

        self.store = SubscriptionStore(persistence, strict=strict)
        self.status_cache = StatusCache(persistence)
        self.feed_cache = FeedCache(persistence)
        self.dispatcher = NotificationDispatcher(self.store, transport, delivery_timeout=delivery_timeout)

        self.store.load()
        self.status_cache.load()
        self.feed_cache.load()

        self.live_monitor = LiveMonitor(
            self.store,
            fetcher,
            self.dispatcher,
            interval=live_poll_interval,
            fetch_timeout=fetch_timeout,
            status_cache=self.status_cache,
        )
        self.feed_monitor = FeedMonitor(
            self.store,
            fetcher,
            self.dispatcher,
            interval=feed_poll_interval,
            fetch_timeout=fetch_timeout,
            feed_cache=self.feed_cache,
        )

        logger.info("Initialized MonitoringController", **self.store.get_stats())

    @classmethod
    def from_settings(
        cls,
        settings: LivewatchSettings,
        persistence: Optional[Persistence] = None,
        fetcher: Optional[StateFetcher] = None,
        transport: Optional[Transport] = None,
    ) -> "MonitoringController":
        """Build a controller with the default collaborators for ``settings``."""
        if persistence is None:
            persistence = JsonFilePersistence(settings.data_dir)
        if fetcher is None:
            fetcher = BilibiliClient(
                live_api_url=settings.live_api_url,
                feed_api_url=settings.feed_api_url,
                timeout=settings.fetch_timeout,
                max_retries=settings.fetch_max_retries,
                user_agent=settings.user_agent,
                rate_limiter=RateLimiter(settings.rate_limit_requests),
            )
        if transport is None:
            transport = OneBotTransport(
                settings.onebot_url,
                access_token=settings.onebot_access_token,
                timeout=settings.delivery_timeout,
            )

        return cls(
            persistence,
            fetcher,
            transport,
            live_poll_interval=settings.live_poll_interval,
            feed_poll_interval=settings.feed_poll_interval,
            fetch_timeout=settings.fetch_timeout,
            delivery_timeout=settings.delivery_timeout,
            shutdown_grace_period=settings.shutdown_grace_period,
            strict=settings.debug_checks,
        )

    async def start(self) -> None:
        """Start both poll loops. Each runs a cycle immediately."""
        await self.live_monitor.start()
        await self.feed_monitor.start()
        logger.info("MonitoringController started")

    async def shutdown(self) -> None:
        """Stop polling, persist caches and flush pending writes."""
        logger.info("Shutting down MonitoringController")

        await asyncio.gather(
            self.live_monitor.stop(self.shutdown_grace_period),
            self.feed_monitor.stop(self.shutdown_grace_period),
        )

        self.status_cache.save()
        self.feed_cache.save()
        await self.persistence.flush()

        await self.fetcher.close()
        await self.transport.close()

        logger.info("MonitoringController shutdown complete")

    # Subscription operations with lazy streamer lookup

    async def resolve_entity(self, uid: int) -> Entity:
        """Return the stored streamer, looking it up remotely if unknown.

        Raises:
            EntityNotFound: If the remote API knows no live room for ``uid``
            FetchFailure: If the lookup failed or timed out
        """
        entity = await self.store.get_entity(uid)
        if entity is not None:
            return entity

        try:
            statuses = await asyncio.wait_for(self.fetcher.fetch_status({uid}), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchFailure(f"Lookup of streamer {uid} timed out") from e

        status = statuses.get(uid)
        if status is None or not status.room_id:
            raise EntityNotFound(uid)

        entity = status.apply_to()
        await self.store.upsert_entity(entity)
        logger.info("Added streamer", uid=uid, name=entity.name, room_id=entity.room_id)
        return entity

    async def subscribe_group(self, group_id: str, uid: int) -> bool:
        await self.resolve_entity(uid)
        return await self.store.subscribe_group(group_id, uid)

    async def subscribe_user(self, user_id: str, uid: int) -> bool:
        await self.resolve_entity(uid)
        return await self.store.subscribe_user(user_id, uid)

    async def unsubscribe_group(self, group_id: str, uid: int) -> bool:
        return await self.store.unsubscribe_group(group_id, uid)

    async def unsubscribe_user(self, user_id: str, uid: int) -> bool:
        return await self.store.unsubscribe_user(user_id, uid)

    async def remove_entity(self, uid: int) -> bool:
        """Remove a streamer, all of its subscriptions and its cached state."""
        removed = await self.store.remove_entity(uid)
        if removed:
            self.status_cache.forget(uid)
            self.feed_cache.forget(uid)
            self.status_cache.save()
            self.feed_cache.save()
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get monitoring statistics."""
        return {
            "store": self.store.get_stats(),
            "live_monitor": self.live_monitor.get_stats(),
            "feed_monitor": self.feed_monitor.get_stats(),
            "status_cache": self.status_cache.get_stats(),
            "feed_cache": self.feed_cache.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
        }
