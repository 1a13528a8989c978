"""
Ingestion of tracker events.

Every operation is independent and stateless. Pageview creation is
authorised by the public site key; every other call is authorised only by
knowing the (unguessable) pageview id.

Scroll samples are merged rather than appended so that the stored row is a
monotonic upper bound over everything received for the pageview, regardless
of arrival order, duplicates or lost deliveries.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlsplit

import structlog
from sqlalchemy import update
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.errors import NotFound
from app.models.tracking import Click, Pageview, PointerBatch, ScrollSample
from app.models.user import _utc_now
from app.schemas import ClickIn, PageviewIn, PointerSampleIn
from app.services.sites import resolve_active_site

logger = structlog.get_logger(__name__)

MAX_DEPTH = 100
USER_AGENT_MAX_LENGTH = 500


# ============== PAGEVIEWS ==============


def _utm_from_url(url: str) -> dict:
    """Read utm_* parameters from the page url's query string."""
    try:
        query = parse_qs(urlsplit(url).query)
    except ValueError:
        return {}
    return {
        key: values[0][:200]
        for key in ("utm_source", "utm_medium", "utm_campaign")
        if (values := query.get(key)) and values[0]
    }


def create_pageview(session: Session, data: PageviewIn, user_agent: Optional[str] = None) -> Pageview:
    """
    Record a page load for an active site.

    Raises:
        InvalidSite: unknown or inactive site key
    """
    site = resolve_active_site(session, data.site_key)

    utm = _utm_from_url(data.url)
    pageview = Pageview(
        site_id=site.id,
        session_id=data.session_id,
        url=data.url,
        path=data.path or "/",
        title=data.title,
        referrer=data.referrer,
        user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
        screen_w=data.screen_w,
        screen_h=data.screen_h,
        utm_source=data.utm_source or utm.get("utm_source"),
        utm_medium=data.utm_medium or utm.get("utm_medium"),
        utm_campaign=data.utm_campaign or utm.get("utm_campaign"),
    )
    session.add(pageview)
    session.commit()
    session.refresh(pageview)

    logger.debug("pageview created", site_id=site.id, pageview_id=pageview.id, path=pageview.path)
    return pageview


def _require_pageview(session: Session, pageview_id: str) -> Pageview:
    pageview = session.get(Pageview, pageview_id)
    if pageview is None:
        raise NotFound("pageview not found")
    return pageview


def record_page_height(session: Session, pageview_id: str, height: int) -> Pageview:
    """Set the rendered page height. Repeating the call is harmless."""
    pageview = _require_pageview(session, pageview_id)
    if pageview.page_height != height:
        pageview.page_height = height
        session.add(pageview)
        session.commit()
        session.refresh(pageview)
    return pageview


# ============== SCROLL MERGE ==============


@dataclass(frozen=True)
class ScrollState:
    max_depth: int
    dwell_ms: int
    zones: Optional[Tuple[int, ...]] = None


def merge_scroll_state(
    current: Optional[ScrollState],
    depth: int,
    dwell_ms: Optional[int] = None,
    zones: Optional[Sequence[int]] = None,
) -> ScrollState:
    """
    Combine a stored scroll state with an incoming sample.

    Every quantity only moves up: depth and dwell take the maximum, zone
    vectors merge element-wise by maximum, and a missing vector on either
    side never erases the other.
    """
    incoming_zones = tuple(zones) if zones is not None else None

    if current is None:
        return ScrollState(
            max_depth=min(depth, MAX_DEPTH),
            dwell_ms=dwell_ms or 0,
            zones=incoming_zones,
        )

    if current.zones is not None and incoming_zones is not None:
        merged_zones = tuple(max(old, new) for old, new in zip(current.zones, incoming_zones))
    else:
        merged_zones = current.zones if current.zones is not None else incoming_zones

    return ScrollState(
        max_depth=min(max(depth, current.max_depth), MAX_DEPTH),
        dwell_ms=max(dwell_ms or 0, current.dwell_ms),
        zones=merged_zones,
    )


def _state_of(sample: ScrollSample) -> ScrollState:
    return ScrollState(
        max_depth=sample.max_depth,
        dwell_ms=sample.dwell_ms,
        zones=tuple(sample.zones) if sample.zones is not None else None,
    )


def merge_scroll(
    session: Session,
    pageview_id: str,
    depth: int,
    dwell_ms: Optional[int] = None,
    zones: Optional[Sequence[int]] = None,
) -> ScrollSample:
    """
    Merge a scroll sample into the pageview's stored scroll state.

    The write is a compare-and-merge on ``ScrollSample.version``: if another
    request advanced the row between our read and our write, the update
    matches nothing and we re-read and merge again.

    Raises:
        NotFound: unknown pageview id
    """
    _require_pageview(session, pageview_id)

    for attempt in range(1, settings.SCROLL_MERGE_RETRIES + 1):
        existing = session.exec(
            select(ScrollSample)
            .where(ScrollSample.pageview_id == pageview_id)
            .order_by(col(ScrollSample.updated_at).desc(), col(ScrollSample.id).desc())
        ).first()

        if existing is None:
            state = merge_scroll_state(None, depth, dwell_ms, zones)
            sample = ScrollSample(
                pageview_id=pageview_id,
                max_depth=state.max_depth,
                dwell_ms=state.dwell_ms,
                zones=list(state.zones) if state.zones is not None else None,
            )
            session.add(sample)
            session.commit()
            session.refresh(sample)
            return sample

        current = _state_of(existing)
        merged = merge_scroll_state(current, depth, dwell_ms, zones)
        if merged == current:
            return existing

        result = session.execute(
            update(ScrollSample)
            .where(
                col(ScrollSample.id) == existing.id,
                col(ScrollSample.version) == existing.version,
            )
            .values(
                max_depth=merged.max_depth,
                dwell_ms=merged.dwell_ms,
                zones=list(merged.zones) if merged.zones is not None else None,
                version=existing.version + 1,
                updated_at=_utc_now(),
            )
        )
        session.commit()

        session.refresh(existing)
        if result.rowcount == 1:
            return existing

        logger.info("scroll merge lost race, retrying", pageview_id=pageview_id, attempt=attempt)

    # Every attempt lost to a concurrent writer; the sample is dropped like a
    # lost delivery and the latest stored state is returned.
    logger.warning("scroll merge gave up after retries", pageview_id=pageview_id)
    return existing


# ============== CLICKS / POINTER ==============


def record_clicks(session: Session, clicks: List[ClickIn]) -> int:
    """
    Append a click batch. No de-duplication; clicks for unknown pageviews
    are dropped.

    Returns:
        Number of clicks stored
    """
    pageview_ids = {c.pageview_id for c in clicks}
    known = set(
        session.exec(select(Pageview.id).where(col(Pageview.id).in_(pageview_ids))).all()
    )

    rows = [
        Click(
            pageview_id=c.pageview_id,
            x=c.x,
            y=c.y,
            selector=c.selector,
            text=c.text,
            href=c.href,
            is_rage=c.is_rage,
            is_dead=c.is_dead,
        )
        for c in clicks
        if c.pageview_id in known
    ]
    if len(rows) < len(clicks):
        logger.warning("dropped clicks for unknown pageviews", dropped=len(clicks) - len(rows))

    session.add_all(rows)
    session.commit()
    return len(rows)


def record_pointer_batch(session: Session, pageview_id: str, samples: List[PointerSampleIn]) -> PointerBatch:
    """Store one flush of pointer samples as a single ordered batch."""
    _require_pageview(session, pageview_id)

    batch = PointerBatch(
        pageview_id=pageview_id,
        samples=[{"t": s.t, "x": s.x, "y": s.y} for s in samples],
    )
    session.add(batch)
    session.commit()
    session.refresh(batch)
    return batch
