"""
Click log and rage/dead-click roll-up.

Clicks are labelled rage/dead by the tracker at capture time; here they are
only filtered and grouped by the selector recorded with them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, or_, select

from app.models.site import Site
from app.models.tracking import Click, Pageview
from app.services.queries import window_start
from app.services.user_agent import parse_user_agent

UNKNOWN_SELECTOR = "(unknown)"
ROLLUP_LIMIT = 100


def _click_filters(site: Site, since: datetime, path: Optional[str]) -> list:
    filters = [Pageview.site_id == site.id, col(Pageview.created_at) >= since]
    if path:
        filters.append(Pageview.path == path)
    return filters


def click_log(
    session: Session,
    site: Site,
    days: int,
    page: int = 1,
    page_size: int = 30,
    path: Optional[str] = None,
    selector_contains: Optional[str] = None,
    has_href: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Newest-first paginated click list with the owning pageview's context."""
    filters = _click_filters(site, window_start(days, now), path)
    if selector_contains:
        filters.append(col(Click.selector).contains(selector_contains))
    if has_href:
        filters.append(col(Click.href).is_not(None))

    total = session.exec(
        select(func.count(col(Click.id))).join(Pageview, col(Click.pageview_id) == col(Pageview.id)).where(*filters)
    ).one()

    rows = session.exec(
        select(Click, Pageview)
        .join(Pageview, col(Click.pageview_id) == col(Pageview.id))
        .where(*filters)
        .order_by(col(Click.created_at).desc(), col(Click.id).desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()

    items = [
        {
            "id": click.id,
            "created_at": click.created_at.isoformat(),
            "path": pv.path,
            "x": click.x,
            "y": click.y,
            "selector": click.selector,
            "text": click.text,
            "href": click.href,
            "is_rage": click.is_rage,
            "is_dead": click.is_dead,
            "session_id": pv.session_id,
            "device": parse_user_agent(pv.user_agent).device,
        }
        for click, pv in rows
    ]
    return {"clicks": items, "total": total, "page": page, "page_size": page_size}


@dataclass
class SelectorRollup:
    selector: str
    text: Optional[str] = None
    rage_count: int = 0
    dead_count: int = 0

    @property
    def total(self) -> int:
        return self.rage_count + self.dead_count

    @property
    def kind(self) -> str:
        if self.rage_count and not self.dead_count:
            return "rage"
        if self.dead_count and not self.rage_count:
            return "dead"
        return "both"

    def to_dict(self) -> dict:
        return {
            "selector": self.selector,
            "text": self.text,
            "rage_count": self.rage_count,
            "dead_count": self.dead_count,
            "count": self.total,
            "type": self.kind,
        }


def rollup_flagged_clicks(clicks: List[Click], limit: int = ROLLUP_LIMIT) -> dict:
    """Group rage/dead clicks by selector, most frequent first."""
    by_selector: Dict[str, SelectorRollup] = {}
    total_rage = total_dead = 0

    for click in clicks:
        key = click.selector or UNKNOWN_SELECTOR
        entry = by_selector.get(key)
        if entry is None:
            entry = by_selector[key] = SelectorRollup(selector=key)
        if click.is_rage:
            entry.rage_count += 1
            total_rage += 1
        if click.is_dead:
            entry.dead_count += 1
            total_dead += 1
        if entry.text is None and click.text:
            entry.text = click.text

    ranked = sorted(by_selector.values(), key=lambda e: e.total, reverse=True)[:limit]
    return {
        "rage_clicks": [e.to_dict() for e in ranked],
        "total_rage": total_rage,
        "total_dead": total_dead,
    }


def rage_dead_rollup(
    session: Session,
    site: Site,
    days: int,
    path: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    filters = _click_filters(site, window_start(days, now), path)
    clicks = session.exec(
        select(Click)
        .join(Pageview, col(Click.pageview_id) == col(Pageview.id))
        .where(*filters, or_(col(Click.is_rage), col(Click.is_dead)))
        .order_by(col(Click.created_at).asc(), col(Click.id).asc())
    ).all()
    return rollup_flagged_clicks(list(clicks))
