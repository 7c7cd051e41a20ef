from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from .base import Base, utcnow


class OperationKind:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EntityType:
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class SyncOperation(Base):
    """A buffered mutation awaiting remote confirmation."""
    __tablename__ = "sync_operations"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # FIFO order
    kind = Column(String(10), nullable=False)
    entity_type = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=True)  # None for DELETE
    target_id = Column(String, nullable=True, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AppSetting(Base):
    """Scalar key/value settings: auth token, current user, last sync time."""
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
