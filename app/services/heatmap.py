"""
Heatmap aggregation for a single page path.

Produces:
- scroll-depth milestones: share of scroll samples reaching each depth
- click grid: clicks binned into square cells keyed by cell centre
- average dwell over samples that recorded any dwell
- attention profile from the 10-band zone vectors

Retrieval is capped at ``HEATMAP_MAX_ROWS`` pageviews per query (newest
first) to bound cost; the cap is a scalability policy only.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func
from sqlmodel import Session, col, select

from app.core.config import settings
from app.models.site import Site
from app.models.tracking import Pageview
from app.services.math import lower_median, mean_int, percent_change, percentage, round_half_up
from app.services.queries import clicks_by_pageview, fetch_pageviews, scrolls_by_pageview, window_start

logger = structlog.get_logger(__name__)

DEPTH_MILESTONES = (0, 10, 25, 50, 75, 90, 100)
FIRST_VIEW_DEPTH = 15  # At or below: left without scrolling past the first screen
BOTTOM_DEPTH = 90
TOP_PAGES = 20


@dataclass(frozen=True)
class ClickPoint:
    x: int
    y: int
    selector: Optional[str] = None


@dataclass
class GridCell:
    x: int
    y: int
    count: int = 0
    selectors: Counter = field(default_factory=Counter)

    @property
    def top_selector(self) -> Optional[str]:
        if not self.selectors:
            return None
        # max() keeps the first key reaching the highest count
        return max(self.selectors.items(), key=lambda item: item[1])[0]

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "count": self.count, "top_selector": self.top_selector}


def cell_center(x: int, y: int, cell_size: int = settings.CLICK_GRID_SIZE) -> Tuple[int, int]:
    """Centre of the grid cell containing ``(x, y)``."""
    half = cell_size // 2
    return (x // cell_size) * cell_size + half, (y // cell_size) * cell_size + half


def click_grid(
    clicks: Iterable[ClickPoint],
    cell_size: int = settings.CLICK_GRID_SIZE,
    top_n: int = settings.HEATMAP_TOP_CELLS,
) -> List[GridCell]:
    """Bin clicks into cells and return the ``top_n`` busiest, busiest first."""
    cells: Dict[Tuple[int, int], GridCell] = {}
    for click in clicks:
        key = cell_center(click.x, click.y, cell_size)
        cell = cells.get(key)
        if cell is None:
            cell = cells[key] = GridCell(x=key[0], y=key[1])
        cell.count += 1
        if click.selector:
            cell.selectors[click.selector] += 1

    ranked = sorted(cells.values(), key=lambda c: c.count, reverse=True)
    return ranked[:top_n]


def scroll_milestones(depths: Sequence[int], milestones: Sequence[int] = DEPTH_MILESTONES) -> List[dict]:
    """Percentage of samples whose max depth reaches each milestone."""
    total = len(depths)
    return [
        {"depth": m, "reach": percentage(sum(1 for d in depths if d >= m), total)}
        for m in milestones
    ]


def average_dwell(dwells: Iterable[int]) -> int:
    """Mean of positive dwell values; zero-dwell samples carry no evidence."""
    return mean_int([d for d in dwells if d > 0])


def attention_profile(
    zone_vectors: Sequence[Sequence[int]],
    depths: Sequence[int],
    zone_count: int = settings.ATTENTION_ZONE_COUNT,
) -> List[int]:
    """
    Relative attention per page band, 0-100 of the hottest band.

    Without zone vectors the share of samples reaching each band's midpoint
    stands in.
    """
    vectors = [v for v in zone_vectors if v is not None and len(v) == zone_count]
    if vectors:
        averages = [sum(v[i] for v in vectors) / len(vectors) for i in range(zone_count)]
        hottest = max(max(averages), 1)
        return [int(round_half_up(a / hottest * 100)) for a in averages]

    if depths:
        band = 100 // zone_count
        midpoints = [i * band + band // 2 for i in range(zone_count)]
        return [percentage(sum(1 for d in depths if d >= m), len(depths)) for m in midpoints]

    return [0] * zone_count


# ============== PAGE ANALYSIS ==============


@dataclass
class PageAnalysis:
    total_pageviews: int = 0
    unique_sessions: int = 0
    avg_dwell_ms: int = 0
    median_dwell_ms: int = 0
    first_view_exit_rate: int = 0
    bottom_reach_rate: int = 0
    avg_page_height: int = 0
    scroll_depth: List[dict] = field(default_factory=list)
    click_map: List[dict] = field(default_factory=list)
    attention_zones: List[int] = field(default_factory=lambda: [0] * settings.ATTENTION_ZONE_COUNT)

    def to_dict(self) -> dict:
        return {
            "total_pageviews": self.total_pageviews,
            "unique_sessions": self.unique_sessions,
            "avg_dwell_ms": self.avg_dwell_ms,
            "median_dwell_ms": self.median_dwell_ms,
            "first_view_exit_rate": self.first_view_exit_rate,
            "bottom_reach_rate": self.bottom_reach_rate,
            "avg_page_height": self.avg_page_height,
            "scroll_depth": self.scroll_depth,
            "click_map": self.click_map,
            "attention_zones": self.attention_zones,
        }


def analyze_pageviews(session: Session, pageviews: List[Pageview]) -> PageAnalysis:
    """Aggregate scroll and click rows attached to ``pageviews``."""
    if not pageviews:
        return PageAnalysis()

    ids = [pv.id for pv in pageviews]
    scrolls = scrolls_by_pageview(session, ids)
    clicks = clicks_by_pageview(session, ids)

    samples = [s for pv_id in ids for s in scrolls.get(pv_id, [])]
    depths = [s.max_depth for s in samples]
    dwells = [s.dwell_ms for s in samples if s.dwell_ms > 0]

    points = [
        ClickPoint(x=c.x, y=c.y, selector=c.selector)
        for pv_id in ids
        for c in clicks.get(pv_id, [])
    ]

    return PageAnalysis(
        total_pageviews=len(pageviews),
        unique_sessions=len({pv.session_id for pv in pageviews}),
        avg_dwell_ms=average_dwell(dwells),
        median_dwell_ms=int(lower_median(dwells)),
        first_view_exit_rate=percentage(sum(1 for d in depths if d <= FIRST_VIEW_DEPTH), len(depths)),
        bottom_reach_rate=percentage(sum(1 for d in depths if d >= BOTTOM_DEPTH), len(depths)),
        avg_page_height=mean_int([pv.page_height or 0 for pv in pageviews]),
        scroll_depth=scroll_milestones(depths),
        click_map=[cell.to_dict() for cell in click_grid(points)],
        attention_zones=attention_profile([s.zones for s in samples if s.zones], depths),
    )


def top_pages(session: Session, site_id: int, since: datetime, limit: int = TOP_PAGES) -> List[dict]:
    views = func.count(col(Pageview.id))
    rows = session.exec(
        select(Pageview.path, views)
        .where(Pageview.site_id == site_id, col(Pageview.created_at) >= since)
        .group_by(col(Pageview.path))
        .order_by(views.desc(), col(Pageview.path))
        .limit(limit)
    ).all()
    return [{"path": path, "views": count} for path, count in rows]


def build_page_heatmap(
    session: Session,
    site: Site,
    path: str,
    days: int,
    now: Optional[datetime] = None,
) -> dict:
    """Heatmap grid, scroll milestones and summary for one path."""
    since = window_start(days, now)
    pageviews = fetch_pageviews(
        session,
        site.id,
        since,
        path=path,
        limit=settings.HEATMAP_MAX_ROWS,
        newest_first=True,
    )
    analysis = analyze_pageviews(session, pageviews)

    logger.debug("heatmap built", site_id=site.id, path=path, pageviews=analysis.total_pageviews)
    return {
        "path": path,
        **analysis.to_dict(),
        "pages": top_pages(session, site.id, since),
    }


def _day_range(start: date, end: date) -> Tuple[datetime, datetime]:
    """Inclusive calendar-day range as a half-open datetime interval."""
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


def compare_periods(
    session: Session,
    site: Site,
    path: str,
    period_a: Tuple[date, date],
    period_b: Tuple[date, date],
) -> dict:
    """Analyse the same path over two date ranges and report the change A vs B."""
    analyses = []
    for start, end in (period_a, period_b):
        since, until = _day_range(start, end)
        pageviews = fetch_pageviews(
            session,
            site.id,
            since,
            until=until,
            path=path,
            limit=settings.HEATMAP_MAX_ROWS,
            newest_first=True,
        )
        analyses.append(analyze_pageviews(session, pageviews))

    a, b = analyses
    return {
        "period_a": a.to_dict(),
        "period_b": b.to_dict(),
        "changes": {
            "pageviews": percent_change(a.total_pageviews, b.total_pageviews),
            "sessions": percent_change(a.unique_sessions, b.unique_sessions),
            "dwell": percent_change(a.avg_dwell_ms, b.avg_dwell_ms),
            "first_view_exit": percent_change(a.first_view_exit_rate, b.first_view_exit_rate),
            "bottom_reach": percent_change(a.bottom_reach_rate, b.bottom_reach_rate),
        },
    }
