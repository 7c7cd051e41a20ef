from sqlalchemy import Column, DateTime, Numeric, String, Text
from .base import Base, TimestampMixin


class BillingCycle:
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    INACTIVE = "INACTIVE"


class RecordState:
    CONFIRMED = "confirmed"        # Server has acknowledged this version
    PENDING_SYNC = "pending_sync"  # Local change not yet applied remotely


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    category_id = Column(String, nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    cost = Column(Numeric(10, 2), nullable=False, default=0)
    billing_cycle = Column(String(20), nullable=False, default=BillingCycle.MONTHLY)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE)
    next_billing_date = Column(DateTime(timezone=True), nullable=False)
    color = Column(String(20), nullable=True)
    logo = Column(String(500), nullable=True)
    website = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    sync_status = Column(String(20), nullable=False, default=RecordState.CONFIRMED, index=True)
