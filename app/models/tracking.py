"""
Behavioral tracking models: one row per page load plus the scroll, click
and pointer measurements attached to it.
"""

import uuid
from typing import List, Optional
from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime

from app.models.user import _utc_now


def generate_pageview_id() -> str:
    """Unguessable id; later ingestion calls are authorised by knowing it."""
    return uuid.uuid4().hex


class Pageview(SQLModel, table=True):
    """One load of one page by one visitor."""

    id: str = Field(default_factory=generate_pageview_id, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)
    session_id: str = Field(index=True)  # Client-generated, unique per site only
    url: str
    path: str = Field(default="/", index=True)
    title: Optional[str] = Field(default=None)
    referrer: Optional[str] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)
    screen_w: Optional[int] = Field(default=None)
    screen_h: Optional[int] = Field(default=None)
    utm_source: Optional[str] = Field(default=None)
    utm_medium: Optional[str] = Field(default=None)
    utm_campaign: Optional[str] = Field(default=None)
    page_height: Optional[int] = Field(default=None)  # Reported after load
    created_at: datetime = Field(default_factory=_utc_now, index=True)


class ScrollSample(SQLModel, table=True):
    """
    Monotonic upper bound of scroll state for a pageview.

    Only advanced by merge; ``version`` guards the compare-and-merge.
    """

    __tablename__ = "scroll_sample"

    id: Optional[int] = Field(default=None, primary_key=True)
    pageview_id: str = Field(foreign_key="pageview.id", index=True)
    max_depth: int = Field(default=0)  # 0-100
    dwell_ms: int = Field(default=0)
    # Seconds visible per 10% band of the page
    zones: Optional[List[int]] = Field(default=None, sa_column=Column(JSON))
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Click(SQLModel, table=True):
    """A single click in document coordinates. Immutable once stored."""

    id: Optional[int] = Field(default=None, primary_key=True)
    pageview_id: str = Field(foreign_key="pageview.id", index=True)
    x: int
    y: int
    selector: Optional[str] = Field(default=None, index=True)
    text: Optional[str] = Field(default=None)
    href: Optional[str] = Field(default=None)
    is_rage: bool = Field(default=False)
    is_dead: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now, index=True)


class PointerBatch(SQLModel, table=True):
    """Ordered pointer samples ``{t, x, y}`` from one flush. Append-only."""

    __tablename__ = "pointer_batch"

    id: Optional[int] = Field(default=None, primary_key=True)
    pageview_id: str = Field(foreign_key="pageview.id", index=True)
    samples: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utc_now)
