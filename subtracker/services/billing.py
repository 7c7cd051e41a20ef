"""
Billing-date arithmetic and spending summaries.
"""
import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from ..core.config import settings
from ..models.base import ensure_utc, utcnow
from ..models.subscription import BillingCycle, SubscriptionStatus
from ..schemas.subscription import Subscription

CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}

CYCLE_LENGTH_DAYS = {
    BillingCycle.MONTHLY: 30,
    BillingCycle.QUARTERLY: 90,
    BillingCycle.YEARLY: 365,
}

BILLINGS_PER_YEAR = {
    BillingCycle.MONTHLY: 12,
    BillingCycle.QUARTERLY: 4,
    BillingCycle.YEARLY: 1,
}


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping to the last day of the month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_billing_date(billing_date: datetime, billing_cycle: str, now: Optional[datetime] = None) -> datetime:
    """
    Return the first billing date strictly after ``now``.

    Dates already in the future are returned unchanged. Lapsed dates move
    forward by whole cycles, always measured from the original date so that
    a 31st does not drift to the 28th after passing February.
    """
    base = ensure_utc(billing_date)
    now = ensure_utc(now) if now is not None else utcnow()
    if base > now:
        return base

    step = CYCLE_MONTHS.get(str(billing_cycle).upper(), 1)  # unknown cycles bill monthly
    periods = 1
    candidate = add_months(base, step)
    while candidate <= now:
        periods += 1
        candidate = add_months(base, step * periods)
    return candidate


def advance_billing_date(subscription: Subscription, now: Optional[datetime] = None) -> Subscription:
    """Return the subscription with a next billing date in the future."""
    upcoming = next_billing_date(subscription.next_billing_date, subscription.billing_cycle, now)
    if upcoming == subscription.next_billing_date:
        return subscription
    return subscription.model_copy(update={"next_billing_date": upcoming})


@dataclass
class BillingInfo:
    next_billing_date: datetime
    days_until_next_billing: int
    total_yearly_cost: Decimal
    cycle_length: int
    is_due_soon: bool = False


def billing_info(subscription: Subscription, now: Optional[datetime] = None) -> BillingInfo:
    now = ensure_utc(now) if now is not None else utcnow()
    upcoming = subscription.next_billing_date or now
    seconds = (upcoming - now).total_seconds()
    # Round partial days up, like a countdown
    days_until = int(-(-seconds // 86400))
    cycle = subscription.billing_cycle
    return BillingInfo(
        next_billing_date=upcoming,
        days_until_next_billing=days_until,
        total_yearly_cost=(subscription.cost or Decimal("0")) * BILLINGS_PER_YEAR.get(cycle, 12),
        cycle_length=CYCLE_LENGTH_DAYS.get(cycle, 30),
        is_due_soon=0 <= days_until <= settings.DUE_SOON_DAYS,
    )


def monthly_cost(subscription: Subscription) -> Decimal:
    months = CYCLE_MONTHS.get(subscription.billing_cycle, 1)
    return subscription.cost / months


@dataclass
class SpendingSummary:
    total_monthly_spending: Decimal = Decimal("0")
    total_yearly_spending: Decimal = Decimal("0")
    active_subscriptions: int = 0
    upcoming: List[Subscription] = field(default_factory=list)


def spending_summary(
    subscriptions: Iterable[Subscription],
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> SpendingSummary:
    """Dashboard totals over active subscriptions."""
    window_days = settings.PAYMENT_REMINDER_DAYS if window_days is None else window_days
    summary = SpendingSummary()
    for sub in subscriptions:
        if sub.status != SubscriptionStatus.ACTIVE:
            continue
        summary.active_subscriptions += 1
        summary.total_monthly_spending += monthly_cost(sub)
        summary.total_yearly_spending += sub.cost * BILLINGS_PER_YEAR.get(sub.billing_cycle, 12)
        days = billing_info(sub, now).days_until_next_billing
        if 0 <= days <= window_days:
            summary.upcoming.append(sub)
    summary.upcoming.sort(key=lambda s: s.next_billing_date)
    return summary
