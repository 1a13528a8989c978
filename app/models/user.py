from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


def _utc_now() -> datetime:
    """Current UTC time as a naive datetime (SQLite drops tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    """Account that owns tracked sites. Credentials live with the auth provider."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
