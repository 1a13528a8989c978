"""
Session reconstruction.

A session is not stored; it is the set of pageviews sharing
``(site_id, session_id)`` ordered by creation time.
"""

from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, col, select

from app.core.errors import NotFound
from app.models.site import Site
from app.models.tracking import Pageview, PointerBatch
from app.services.queries import (
    clicks_by_pageview,
    fetch_pageviews,
    group_by_session,
    paginate,
    scrolls_by_pageview,
    window_start,
)
from app.services.user_agent import parse_user_agent

EVENT_ORDER = {"pageview": 0, "scroll": 1, "click": 2}


def summarize_session(session_id: str, pageviews: List[Pageview], scrolls: dict, clicks: dict) -> dict:
    first = pageviews[0]
    ua = parse_user_agent(first.user_agent)
    return {
        "session_id": session_id,
        "started_at": first.created_at.isoformat(),
        "page_count": len(pageviews),
        "total_clicks": sum(len(clicks.get(pv.id, [])) for pv in pageviews),
        "dwell_ms": sum(s.dwell_ms for pv in pageviews for s in scrolls.get(pv.id, [])),
        "entry_page": first.path,
        "referrer": first.referrer,
        "device": ua.device,
        "browser": ua.browser,
        "os": ua.os,
        "screen_w": first.screen_w,
        "screen_h": first.screen_h,
    }


def list_sessions(
    session: Session,
    site: Site,
    days: int,
    page: int = 1,
    page_size: int = 20,
    path: Optional[str] = None,
    device: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Session summaries, most recently started first."""
    pageviews = fetch_pageviews(session, site.id, window_start(days, now), path=path)
    ids = [pv.id for pv in pageviews]
    scrolls = scrolls_by_pageview(session, ids)
    clicks = clicks_by_pageview(session, ids)

    summaries = [
        summarize_session(session_id, pvs, scrolls, clicks)
        for session_id, pvs in group_by_session(pageviews).items()
    ]
    if device:
        summaries = [s for s in summaries if s["device"] == device]
    summaries.sort(key=lambda s: s["started_at"], reverse=True)

    return {
        "sessions": paginate(summaries, page, page_size),
        "total": len(summaries),
        "page": page,
        "page_size": page_size,
    }


def session_timeline(session: Session, site: Site, session_id: str) -> dict:
    """
    Chronological pageview/scroll/click events for one session.

    Raises:
        NotFound: the session has no pageviews on this site
    """
    pageviews = fetch_pageviews(session, site.id, datetime.min, session_id=session_id)
    if not pageviews:
        raise NotFound("session not found")

    ids = [pv.id for pv in pageviews]
    scrolls = scrolls_by_pageview(session, ids)
    clicks = clicks_by_pageview(session, ids)

    events = []
    for pv in pageviews:
        events.append(
            {"type": "pageview", "timestamp": pv.created_at, "path": pv.path, "title": pv.title}
        )
        for sc in scrolls.get(pv.id, []):
            events.append(
                {
                    "type": "scroll",
                    "timestamp": sc.updated_at,
                    "path": pv.path,
                    "max_depth": sc.max_depth,
                    "dwell_ms": sc.dwell_ms,
                }
            )
        for cl in clicks.get(pv.id, []):
            events.append(
                {
                    "type": "click",
                    "timestamp": cl.created_at,
                    "path": pv.path,
                    "x": cl.x,
                    "y": cl.y,
                    "selector": cl.selector,
                    "text": cl.text,
                    "href": cl.href,
                    "is_rage": cl.is_rage,
                    "is_dead": cl.is_dead,
                }
            )

    # Stable sort: same-instant events keep pageview -> scroll -> click order
    events.sort(key=lambda e: (e["timestamp"], EVENT_ORDER[e["type"]]))
    for event in events:
        event["timestamp"] = event["timestamp"].isoformat()

    summary = summarize_session(session_id, pageviews, scrolls, clicks)
    return {**summary, "events": events}


def export_pointer_batches(session: Session, site: Site, session_id: str) -> dict:
    """Raw pointer batches per pageview, in arrival order."""
    pageviews = fetch_pageviews(session, site.id, datetime.min, session_id=session_id)
    if not pageviews:
        raise NotFound("session not found")

    batches = session.exec(
        select(PointerBatch)
        .where(col(PointerBatch.pageview_id).in_([pv.id for pv in pageviews]))
        .order_by(col(PointerBatch.created_at).asc(), col(PointerBatch.id).asc())
    ).all()

    by_pageview = {pv.id: [] for pv in pageviews}
    for batch in batches:
        by_pageview[batch.pageview_id].append(batch.samples)

    return {
        "session_id": session_id,
        "pageviews": [
            {"pageview_id": pv.id, "path": pv.path, "batches": by_pageview[pv.id]}
            for pv in pageviews
        ],
    }
