from typing import List, Optional
from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime

from app.models.user import _utc_now


class Funnel(SQLModel, table=True):
    """Ordered path sequence measured for step-wise conversion."""

    id: Optional[int] = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)
    name: str
    steps: List[dict] = Field(default_factory=list, sa_column=Column(JSON))  # [{"path", "label"}]
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
