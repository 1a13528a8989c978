"""
Site analytics roll-up: daily traffic, audience distributions, bounce rate
and session averages, plus the real-time and UTM views.

Attribution (device, browser, OS, screen, referrer) comes from each
session's first pageview.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from sqlmodel import Session

from app.core.config import settings
from app.models.site import Site
from app.models.tracking import Pageview
from app.models.user import _utc_now
from app.services.math import percentage, round_half_up
from app.services.queries import fetch_pageviews, group_by_session, scrolls_by_pageview, window_start
from app.services.user_agent import parse_user_agent

DIRECT = "(direct)"
NOT_SET = "(not set)"
TOP_DISTRIBUTION = 10
REALTIME_TOP_PATHS = 20


def referrer_host(referrer: Optional[str]) -> str:
    """Host of the referrer url; unparsable values are kept as-is."""
    if not referrer:
        return DIRECT
    try:
        host = urlsplit(referrer).hostname
    except ValueError:
        return referrer
    return host or referrer


def to_distribution(counter: Counter, limit: Optional[int] = None) -> List[dict]:
    """``[{"name", "count"}]`` by count descending; ties keep first-seen order."""
    ranked = sorted(counter.items(), key=lambda item: item[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [{"name": name, "count": count} for name, count in ranked]


def daily_buckets(pageviews: Iterable[Pageview], start: date, end: date) -> List[dict]:
    """One bucket per calendar day from ``start`` to ``end`` inclusive."""
    views: Counter = Counter()
    sessions: Dict[date, set] = {}
    for pv in pageviews:
        day = pv.created_at.date()
        views[day] += 1
        sessions.setdefault(day, set()).add(pv.session_id)

    buckets = []
    day = start
    while day <= end:
        buckets.append(
            {
                "date": day.isoformat(),
                "pageviews": views.get(day, 0),
                "sessions": len(sessions.get(day, ())),
            }
        )
        day += timedelta(days=1)
    return buckets


@dataclass
class Rollup:
    daily: List[dict] = field(default_factory=list)
    device: Counter = field(default_factory=Counter)
    browser: Counter = field(default_factory=Counter)
    os: Counter = field(default_factory=Counter)
    screen: Counter = field(default_factory=Counter)
    referrer: Counter = field(default_factory=Counter)
    sessions: int = 0
    pages: int = 0
    bounces: int = 0
    dwell_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "daily": self.daily,
            "device_dist": to_distribution(self.device),
            "browser_dist": to_distribution(self.browser),
            "os_dist": to_distribution(self.os),
            "screen_dist": to_distribution(self.screen, TOP_DISTRIBUTION),
            "referrer_dist": to_distribution(self.referrer, TOP_DISTRIBUTION),
            "total_sessions": self.sessions,
            "bounce_rate": percentage(self.bounces, self.sessions),
            "avg_pages_per_session": round_half_up(self.pages / self.sessions, 1) if self.sessions else 0,
            "avg_session_duration_ms": int(round_half_up(self.dwell_ms / self.sessions)) if self.sessions else 0,
        }


def rollup(
    pageviews: Sequence[Pageview],
    dwell_by_pageview: Dict[str, int],
    start: date,
    end: date,
) -> Rollup:
    """
    Aggregate chronologically ordered pageviews.

    ``dwell_by_pageview`` holds the summed scroll dwell of each pageview;
    a session's duration is the sum over its pageviews.
    """
    result = Rollup(daily=daily_buckets(pageviews, start, end))

    for pvs in group_by_session(pageviews).values():
        first = pvs[0]
        ua = parse_user_agent(first.user_agent)
        result.device[ua.device] += 1
        result.browser[ua.browser] += 1
        result.os[ua.os] += 1
        if first.screen_w and first.screen_h:
            result.screen[f"{first.screen_w}x{first.screen_h}"] += 1
        result.referrer[referrer_host(first.referrer)] += 1

        result.sessions += 1
        result.pages += len(pvs)
        if len(pvs) == 1:
            result.bounces += 1
        result.dwell_ms += sum(dwell_by_pageview.get(pv.id, 0) for pv in pvs)

    return result


def site_rollup(session: Session, site: Site, days: int, now: Optional[datetime] = None) -> dict:
    now = now or _utc_now()
    since = window_start(days, now)
    pageviews = fetch_pageviews(session, site.id, since)

    scrolls = scrolls_by_pageview(session, [pv.id for pv in pageviews])
    dwell = {pv_id: sum(s.dwell_ms for s in rows) for pv_id, rows in scrolls.items()}

    return rollup(pageviews, dwell, since.date(), now.date()).to_dict()


def realtime(session: Session, site: Site, now: Optional[datetime] = None) -> dict:
    """Active visitors and their pages over the trailing window. Never cached."""
    now = now or _utc_now()
    since = now - timedelta(seconds=settings.REALTIME_WINDOW_SECONDS)
    pageviews = fetch_pageviews(session, site.id, since)

    paths = Counter(pv.path for pv in pageviews)
    top = sorted(paths.items(), key=lambda item: item[1], reverse=True)[:REALTIME_TOP_PATHS]
    return {
        "active_visitors": len({pv.session_id for pv in pageviews}),
        "top_pages": [{"path": path, "count": count} for path, count in top],
    }


def utm_breakdown(session: Session, site: Site, days: int, now: Optional[datetime] = None) -> dict:
    """Pageviews carrying any UTM field, grouped by source/medium/campaign."""
    pageviews = [
        pv
        for pv in fetch_pageviews(session, site.id, window_start(days, now))
        if pv.utm_source or pv.utm_medium or pv.utm_campaign
    ]

    groups: Counter = Counter(
        (pv.utm_source or NOT_SET, pv.utm_medium or NOT_SET, pv.utm_campaign or NOT_SET)
        for pv in pageviews
    )
    total = len(pageviews)
    ranked = sorted(groups.items(), key=lambda item: item[1], reverse=True)
    return {
        "total": total,
        "sources": [
            {
                "source": source,
                "medium": medium,
                "campaign": campaign,
                "count": count,
                "percentage": percentage(count, total, digits=1),
            }
            for (source, medium, campaign), count in ranked
        ],
    }
