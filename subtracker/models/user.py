from sqlalchemy import Column, DateTime, String
from .base import Base, TimestampMixin


class UserRole:
    USER = "user"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    role = Column(String(20), nullable=False, default=UserRole.USER)
    avatar_url = Column(String(500), nullable=True)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    version = Column(String(20), nullable=True)
