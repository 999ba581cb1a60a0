"""Realtime alert dispatch to subscribed observers."""

import asyncio
import itertools
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from cache import TTLCache
from db import AlertRepository
from models import AlertEvent, AlertSeverity
from schemas import Notification
from settings import settings


def route_alert(alert: AlertEvent) -> Notification:
    """Pick the presentation channel and dwell time for an alert."""
    if alert.severity == AlertSeverity.CRITICAL.value:
        channel, dwell_ms = "persistent", settings.alert_dwell_critical_ms
    elif alert.severity == AlertSeverity.WARNING.value:
        channel, dwell_ms = "standard", settings.alert_dwell_warning_ms
    else:
        channel, dwell_ms = "transient", settings.alert_dwell_info_ms

    return Notification(
        alert_id=alert.id,
        severity=alert.severity,
        title=alert.title,
        message=alert.message,
        channel=channel,
        dwell_ms=dwell_ms,
    )


class SubscriptionState(str, Enum):
    """Lifecycle of an alert subscription."""

    SUBSCRIBED = "subscribed"
    DELIVERING = "delivering"
    UNSUBSCRIBED = "unsubscribed"


class AlertSubscription:
    """One observer's buffered stream of notifications."""

    def __init__(
        self,
        subscription_id: int,
        on_invalidate: Optional[Callable[[], None]] = None,
        buffer_size: Optional[int] = None,
    ):
        self.id = subscription_id
        self.state = SubscriptionState.SUBSCRIBED
        self.on_invalidate = on_invalidate
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=buffer_size or settings.alert_subscriber_buffer
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, notification: Notification) -> bool:
        """Hand one notification to this subscriber. Returns False if dropped."""
        if self.state is SubscriptionState.UNSUBSCRIBED:
            return False

        self.state = SubscriptionState.DELIVERING
        try:
            if self.on_invalidate is not None:
                self.on_invalidate()
            self._queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Subscriber {self.id} buffer full, dropping alert {notification.alert_id}"
            )
            return False
        finally:
            if self.state is SubscriptionState.DELIVERING:
                self.state = SubscriptionState.SUBSCRIBED

    async def next(self, timeout: Optional[float] = None) -> Optional[Notification]:
        """Wait for the next notification; None on timeout."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self.state = SubscriptionState.UNSUBSCRIBED


class AlertDispatcher:
    """Fan newly inserted alert rows out to active subscribers.

    New rows are found by polling the alert log past a cursor. The cursor
    starts at the newest row present when the dispatcher first polls, and it
    advances whether or not anybody is subscribed, so an alert inserted while
    no subscriber is active is never delivered to anyone.
    """

    def __init__(self, listing_cache: Optional[TTLCache] = None):
        self.listing_cache = listing_cache
        self.cursor: Optional[int] = None
        self._subscribers: Dict[int, AlertSubscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(
        self, on_invalidate: Optional[Callable[[], None]] = None
    ) -> AsyncIterator[AlertSubscription]:
        """Register a subscriber for the duration of the ``async with`` block."""
        subscription = AlertSubscription(next(self._ids), on_invalidate=on_invalidate)
        self._subscribers[subscription.id] = subscription
        logger.info(f"Alert subscriber {subscription.id} connected")
        try:
            yield subscription
        finally:
            self._subscribers.pop(subscription.id, None)
            subscription.close()
            logger.info(f"Alert subscriber {subscription.id} disconnected")

    def publish(self, alert: AlertEvent) -> int:
        """Route one alert to every active subscriber; returns deliveries."""
        if self.listing_cache is not None:
            self.listing_cache.invalidate_all()

        subscribers = list(self._subscribers.values())
        if not subscribers:
            logger.debug(f"No active subscribers, alert {alert.id} not delivered")
            return 0

        notification = route_alert(alert)
        return sum(1 for subscriber in subscribers if subscriber.deliver(notification))

    def poll(self, db: Session) -> List[AlertEvent]:
        """Publish alerts inserted since the last poll and return them."""
        repo = AlertRepository(db)
        if self.cursor is None:
            self.cursor = repo.latest_id()
            return []

        new_alerts = repo.list_after(self.cursor)
        for alert in new_alerts:
            self.publish(alert)
            self.cursor = alert.id
        return new_alerts


# Global dispatcher instance
alert_listing_cache = TTLCache(ttl_seconds=settings.alert_cache_ttl_sec)
alert_dispatcher = AlertDispatcher(listing_cache=alert_listing_cache)
