from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.base import ensure_utc, utcnow
from ..models.user import UserRole


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str = ""
    role: str = UserRole.USER
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    avatar_url: Optional[str] = None
    last_sync: Optional[datetime] = None
    version: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return value if isinstance(value, str) else str(value)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value):
        role = str(value or UserRole.USER).lower()
        return role if role in (UserRole.USER, UserRole.ADMIN) else UserRole.USER

    @field_validator("created_at", "updated_at", "last_sync")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value)


def normalize_user(raw: Dict[str, Any]) -> User:
    """Fill in the fields the auth handler may omit."""
    now = utcnow()
    return User(
        id=raw["id"],
        email=raw["email"],
        name=raw.get("name") or "",
        role=raw.get("role"),
        created_at=raw.get("created_at") or now,
        updated_at=raw.get("updated_at") or now,
        avatar_url=raw.get("avatar_url"),
        last_sync=raw.get("last_sync") or now,
        version=raw.get("version") or "1.0",
    )
