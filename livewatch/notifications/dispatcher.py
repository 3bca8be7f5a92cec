"""Fan-out of detected events to subscribed groups and users."""

import asyncio
import time
from typing import List, Optional

import structlog
from prometheus_client import Counter

from ..events.models import Event
from ..storage.models import GroupSubscription, SubscriberKind
from ..storage.subscriptions import SubscriptionStore
from .base import DeliveryResult, DeliveryStatus, Transport
from .formatter import MessageFormatter


logger = structlog.get_logger(__name__)

DELIVERIES_TOTAL = Counter(
    "livewatch_deliveries_total",
    "Total number of notification deliveries attempted",
    ["recipient_kind", "event", "status"],
)


class NotificationDispatcher:
    """Delivers one event to every subscriber of a streamer.

    Each recipient gets exactly one attempt per event. A failure for one
    recipient is logged and recorded in the returned results without affecting
    the others.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        transport: Transport,
        formatter: Optional[MessageFormatter] = None,
        delivery_timeout: float = 10,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Subscription store used for fan-out lookups
            transport: Message transport
            formatter: Message formatter, defaults to MessageFormatter()
            delivery_timeout: Upper bound for a single delivery in seconds
        """
        self.store = store
        self.transport = transport
        self.formatter = formatter or MessageFormatter()
        self.delivery_timeout = delivery_timeout
        self._delivered = 0
        self._failed = 0

        logger.info("Initialized NotificationDispatcher", delivery_timeout=delivery_timeout)

    async def notify(self, uid: int, event: Event) -> List[DeliveryResult]:
        """Deliver an event to the streamer's enabled groups and users.

        Args:
            uid: Streamer uid
            event: Detected event

        Returns:
            One result per recipient, groups first
        """
        group_ids, user_ids = await self.store.subscribers_of(uid)
        if not group_ids and not user_ids:
            logger.debug("No subscribers for event", uid=uid, event_name=event.name)
            return []

        results: List[DeliveryResult] = []

        for group_id in sorted(group_ids):
            group = await self.store.get_group(group_id)
            if group is None:
                continue
            results.append(await self._deliver(SubscriberKind.GROUP, group_id, event, group))

        for user_id in sorted(user_ids):
            results.append(await self._deliver(SubscriberKind.USER, user_id, event))

        delivered = sum(1 for r in results if r.ok)
        logger.info(
            "Event dispatched",
            uid=uid,
            event_name=event.name,
            recipients=len(results),
            delivered=delivered,
            failed=len(results) - delivered,
        )
        return results

    async def _deliver(
        self,
        kind: SubscriberKind,
        recipient_id: str,
        event: Event,
        group: Optional[GroupSubscription] = None,
    ) -> DeliveryResult:
        start_time = time.monotonic()

        try:
            segments = self.formatter.build(event, group)
            await asyncio.wait_for(
                self.transport.deliver(kind, recipient_id, segments),
                timeout=self.delivery_timeout,
            )
        except asyncio.TimeoutError:
            result = DeliveryResult(
                kind=kind,
                recipient_id=recipient_id,
                status=DeliveryStatus.TIMEOUT,
                message=f"Delivery timed out after {self.delivery_timeout}s",
            )
            logger.error(
                "Notification delivery timed out",
                recipient_kind=kind.value,
                recipient=recipient_id,
                event_name=event.name,
                timeout=self.delivery_timeout,
            )
        except Exception as e:
            result = DeliveryResult(
                kind=kind,
                recipient_id=recipient_id,
                status=DeliveryStatus.FAILED,
                message=str(e),
            )
            logger.error(
                "Notification delivery failed",
                recipient_kind=kind.value,
                recipient=recipient_id,
                event_name=event.name,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            result = DeliveryResult(kind=kind, recipient_id=recipient_id, status=DeliveryStatus.SUCCESS)
            logger.debug(
                "Notification delivered",
                recipient_kind=kind.value,
                recipient=recipient_id,
                event_name=event.name,
            )

        result.execution_time_seconds = time.monotonic() - start_time

        if result.ok:
            self._delivered += 1
        else:
            self._failed += 1
        DELIVERIES_TOTAL.labels(
            recipient_kind=kind.value,
            event=event.name,
            status=result.status.value,
        ).inc()

        return result

    def get_stats(self) -> dict[str, int]:
        return {"delivered": self._delivered, "failed": self._failed}
