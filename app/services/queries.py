"""
Shared read helpers for the aggregation services.

Aggregations are read-only and tolerate data that is still being flushed;
nothing here takes locks.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, col, select

from app.models.tracking import Click, Pageview, ScrollSample
from app.models.user import _utc_now
from app.services.ingestion import merge_scroll_state


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or _utc_now()) - timedelta(days=days)


def fetch_pageviews(
    session: Session,
    site_id: int,
    since: datetime,
    until: Optional[datetime] = None,
    path: Optional[str] = None,
    session_id: Optional[str] = None,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> List[Pageview]:
    stmt = select(Pageview).where(Pageview.site_id == site_id, col(Pageview.created_at) >= since)
    if until is not None:
        stmt = stmt.where(col(Pageview.created_at) < until)
    if path is not None:
        stmt = stmt.where(Pageview.path == path)
    if session_id is not None:
        stmt = stmt.where(Pageview.session_id == session_id)

    order = col(Pageview.created_at).desc() if newest_first else col(Pageview.created_at).asc()
    stmt = stmt.order_by(order)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def collapse_scroll_rows(rows: List[ScrollSample]) -> ScrollSample:
    """
    Fold every row stored for one pageview into a single upper bound.

    Two racing first writes can leave duplicate rows; they merge the same way
    ingestion merges samples. The result is detached from the session.
    """
    if len(rows) == 1:
        return rows[0]

    state = None
    for row in rows:
        state = merge_scroll_state(state, row.max_depth, row.dwell_ms, row.zones)
    return ScrollSample(
        pageview_id=rows[0].pageview_id,
        max_depth=state.max_depth,
        dwell_ms=state.dwell_ms,
        zones=list(state.zones) if state.zones is not None else None,
        version=max(row.version for row in rows),
        created_at=min(row.created_at for row in rows),
        updated_at=max(row.updated_at for row in rows),
    )


def scrolls_by_pageview(session: Session, pageview_ids: Iterable[str]) -> Dict[str, List[ScrollSample]]:
    """Pageview id -> a one-element list holding its collapsed scroll state."""
    ids = list(pageview_ids)
    grouped: Dict[str, List[ScrollSample]] = defaultdict(list)
    if not ids:
        return grouped
    rows = session.exec(
        select(ScrollSample)
        .where(col(ScrollSample.pageview_id).in_(ids))
        .order_by(col(ScrollSample.created_at).asc(), col(ScrollSample.id).asc())
    ).all()
    for row in rows:
        grouped[row.pageview_id].append(row)
    for pv_id, pv_rows in grouped.items():
        grouped[pv_id] = [collapse_scroll_rows(pv_rows)]
    return grouped


def clicks_by_pageview(session: Session, pageview_ids: Iterable[str]) -> Dict[str, List[Click]]:
    ids = list(pageview_ids)
    grouped: Dict[str, List[Click]] = defaultdict(list)
    if not ids:
        return grouped
    rows = session.exec(
        select(Click)
        .where(col(Click.pageview_id).in_(ids))
        .order_by(col(Click.created_at).asc(), col(Click.id).asc())
    ).all()
    for row in rows:
        grouped[row.pageview_id].append(row)
    return grouped


def group_by_session(pageviews: Iterable[Pageview]) -> Dict[str, List[Pageview]]:
    """
    Session id -> pageviews, preserving input order.

    Callers pass pageviews in chronological order, so each list is the
    session's timeline and dict order is first-seen order.
    """
    sessions: Dict[str, List[Pageview]] = {}
    for pv in pageviews:
        sessions.setdefault(pv.session_id, []).append(pv)
    return sessions


def paginate(items: List, page: int, page_size: int) -> List:
    start = (page - 1) * page_size
    return items[start : start + page_size]
