"""
User-facing notifications: upcoming payment reminders and connectivity
banners. Delivery is pluggable; by default notifications are logged.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set

from ..core.config import settings
from ..models.subscription import SubscriptionStatus
from ..schemas.subscription import Subscription
from .billing import billing_info

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    title: str
    body: str
    tag: str
    require_interaction: bool = False


NotificationSink = Callable[[Notification], None]


def log_sink(notification: Notification) -> None:
    logger.info("[%s] %s: %s", notification.tag, notification.title, notification.body)


class NotificationService:
    def __init__(self, sinks: Optional[List[NotificationSink]] = None, reminder_days: Optional[int] = None):
        self.sinks: List[NotificationSink] = list(sinks) if sinks is not None else [log_sink]
        self.reminder_days = settings.PAYMENT_REMINDER_DAYS if reminder_days is None else reminder_days
        self._reminded: Set[str] = set()

    def add_sink(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def _emit(self, notification: Notification) -> None:
        for sink in self.sinks:
            try:
                sink(notification)
            except Exception as exc:
                logger.error("Notification sink %r failed: %s", sink, exc)

    def payment_reminder(self, subscription: Subscription, now: Optional[datetime] = None) -> Optional[Notification]:
        """Remind once per subscription when an active charge is due within the window."""
        if subscription.status != SubscriptionStatus.ACTIVE or not subscription.id:
            return None
        if subscription.id in self._reminded:
            return None
        days = billing_info(subscription, now).days_until_next_billing
        if days > self.reminder_days:
            return None

        notification = Notification(
            title="Upcoming Payment Reminder",
            body=f"{subscription.name} payment of ${subscription.cost:,.2f} is due in {days} days",
            tag=f"payment-{subscription.name}",
            require_interaction=True,
        )
        self._reminded.add(subscription.id)
        self._emit(notification)
        return notification

    def remind_upcoming(self, subscriptions: List[Subscription], now: Optional[datetime] = None) -> List[Notification]:
        sent = []
        for sub in subscriptions:
            notification = self.payment_reminder(sub, now)
            if notification is not None:
                sent.append(notification)
        return sent

    def sync_status_changed(self, online: bool) -> Notification:
        if online:
            notification = Notification(
                title="Back Online",
                body="Your connection has been restored. Syncing changes...",
                tag="sync",
            )
        else:
            notification = Notification(
                title="Offline Mode",
                body="You are now offline. Changes will be saved locally.",
                tag="sync",
            )
        self._emit(notification)
        return notification
