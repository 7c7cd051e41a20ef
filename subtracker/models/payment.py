from sqlalchemy import Column, DateTime, Numeric, String
from .base import Base, generate_uuid


class PaymentStatus:
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    PENDING = "PENDING"


class PaymentHistory(Base):
    __tablename__ = "payment_history"

    id = Column(String, primary_key=True, default=generate_uuid)
    subscription_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
