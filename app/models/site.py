"""
Site registry model.

A site maps the public key embedded in the tracker snippet to the owning
account. The key is minted once on registration and never changes.
"""

import secrets
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from app.models.user import _utc_now


def generate_site_key() -> str:
    return secrets.token_urlsafe(16)


class Site(SQLModel, table=True):
    """A tracked domain."""

    id: Optional[int] = Field(default=None, primary_key=True)
    site_key: str = Field(default_factory=generate_site_key, unique=True, index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    domain: str = Field(unique=True, index=True)  # Normalised: no scheme, no trailing slash
    name: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
