"""
Subscription record as seen by the repository and the UI, plus the
adapters between it and the REST API's snake_case wire format.
"""
import time
from datetime import date, datetime, time as dt_time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.base import ensure_utc, utcnow
from ..models.subscription import BillingCycle, RecordState, SubscriptionStatus

BILLING_CYCLES = (BillingCycle.MONTHLY, BillingCycle.QUARTERLY, BillingCycle.YEARLY)
STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED, SubscriptionStatus.INACTIVE)
RECORD_STATES = (RecordState.CONFIRMED, RecordState.PENDING_SYNC)


def _to_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, dt_time(), tzinfo=timezone.utc)
    return value


class Subscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    name: str
    description: str = ""
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    billing_cycle: str = BillingCycle.MONTHLY
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = None
    status: str = SubscriptionStatus.ACTIVE
    category_id: Optional[str] = None
    user_id: str
    next_billing_date: datetime = Field(default_factory=utcnow)
    color: Optional[str] = None
    logo: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    sync_status: str = RecordState.CONFIRMED

    @field_validator("id", "user_id", "category_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        # Numeric ids from older handlers are adapted to strings here
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value):
        return value or ""

    @field_validator("cost", mode="before")
    @classmethod
    def _parse_cost(cls, value):
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def _normalize_cycle(cls, value):
        cycle = str(value or BillingCycle.MONTHLY).upper()
        if cycle not in BILLING_CYCLES:
            raise ValueError(f"Unknown billing cycle: {value}")
        return cycle

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        status = str(value or SubscriptionStatus.ACTIVE).upper()
        if status == "EXPIRED":
            status = SubscriptionStatus.INACTIVE
        if status not in STATUSES:
            raise ValueError(f"Unknown subscription status: {value}")
        return status

    @field_validator("sync_status")
    @classmethod
    def _check_sync_status(cls, value):
        if value not in RECORD_STATES:
            raise ValueError(f"Unknown record state: {value}")
        return value

    @field_validator("start_date", "end_date", "next_billing_date", mode="before")
    @classmethod
    def _accept_dates(cls, value):
        return _to_datetime(value)

    @field_validator("start_date", "end_date", "next_billing_date")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value)

    @property
    def is_pending(self) -> bool:
        return self.sync_status == RecordState.PENDING_SYNC


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _parse_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def normalize_subscription(raw: Dict[str, Any], user_id: Optional[str] = None) -> Subscription:
    """
    Map a server record onto the internal shape.

    The handlers have shipped several spellings over time (price/cost,
    billing_cycle/billingCycle, category/category_id/categoryId), so every
    field is looked up under all known keys and defaulted when missing.
    Unknown cycles and statuses fall back to MONTHLY and ACTIVE; a record
    that still fails validation (negative price, unparseable date) raises
    ``ValidationError``.
    """
    cycle = str(_first(raw, "billing_cycle", "billingCycle") or BillingCycle.MONTHLY).upper()
    if cycle not in BILLING_CYCLES:
        cycle = BillingCycle.MONTHLY
    status = str(_first(raw, "status") or SubscriptionStatus.ACTIVE).upper()
    if status == "EXPIRED":
        status = SubscriptionStatus.INACTIVE
    if status not in STATUSES:
        status = SubscriptionStatus.ACTIVE
    now = utcnow()
    return Subscription(
        id=_first(raw, "id") or str(int(time.time() * 1000)),
        name=_first(raw, "name") or "Untitled Subscription",
        description=_first(raw, "description") or "",
        cost=_parse_decimal(_first(raw, "price", "cost")),
        billing_cycle=cycle,
        start_date=_first(raw, "start_date", "startDate") or now,
        end_date=_first(raw, "end_date", "endDate"),
        status=status,
        category_id=_first(raw, "category_id", "category", "categoryId"),
        user_id=_first(raw, "user_id", "userId") or user_id,
        next_billing_date=_first(raw, "next_billing_date", "nextBillingDate") or now,
        color=_first(raw, "color"),
        logo=_first(raw, "logo"),
        website=_first(raw, "website"),
        notes=_first(raw, "notes"),
        sync_status=RecordState.CONFIRMED,
    )


def to_api_payload(subscription: Subscription) -> Dict[str, Any]:
    """Format a subscription for POST/PUT bodies."""
    return {
        "id": subscription.id,
        "name": subscription.name,
        "price": str(subscription.cost),
        "billing_cycle": subscription.billing_cycle.lower(),
        "user_id": subscription.user_id,
        "category": subscription.category_id,
        "description": subscription.description,
        "start_date": subscription.start_date.isoformat(),
        "end_date": subscription.end_date.isoformat() if subscription.end_date else None,
        "status": subscription.status,
        "next_billing_date": subscription.next_billing_date.isoformat(),
        "color": subscription.color,
        "logo": subscription.logo,
        "website": subscription.website,
        "notes": subscription.notes,
    }
