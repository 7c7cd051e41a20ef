from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.base import ensure_utc, utcnow
from ..models.payment import PaymentStatus


class Category(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    name: str
    description: Optional[str] = None


class PaymentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    subscription_id: str
    amount: Decimal = Field(ge=0)
    payment_date: datetime = Field(default_factory=utcnow)
    status: str = PaymentStatus.PENDING

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        status = str(value or PaymentStatus.PENDING).upper()
        if status not in (PaymentStatus.SUCCESSFUL, PaymentStatus.FAILED, PaymentStatus.PENDING):
            raise ValueError(f"Unknown payment status: {value}")
        return status

    @field_validator("payment_date")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value)
