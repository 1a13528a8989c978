"""
Funnel engine.

Each session walks its pageviews in chronological order with a single
"next expected step" pointer. A matching path counts the session for that
step and advances the pointer; anything else is ignored. The pointer never
moves back, so a session counts at most once per step and step counts are
non-increasing.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from sqlmodel import Session, col, select

from app.core.errors import MalformedPayload, NotFound
from app.models.funnel import Funnel
from app.models.site import Site
from app.models.user import _utc_now
from app.schemas import FunnelStepIn
from app.services.math import round_half_up
from app.services.queries import fetch_pageviews, group_by_session, window_start

logger = structlog.get_logger(__name__)


def count_step_sessions(step_paths: Sequence[str], session_paths: Iterable[Sequence[str]]) -> List[int]:
    """Number of sessions reaching each step in order."""
    counts = [0] * len(step_paths)
    for paths in session_paths:
        expected = 0
        for path in paths:
            if expected >= len(step_paths):
                break
            if path == step_paths[expected]:
                counts[expected] += 1
                expected += 1
    return counts


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100, 1)


def evaluate_funnel(steps: Sequence[dict], session_paths: Iterable[Sequence[str]]) -> List[dict]:
    """
    Step-wise conversion for ``steps`` (``{"path", "label"}``).

    ``rate`` is relative to step 0, ``dropoff`` to the previous step. With
    no sessions at step 0 every rate is 0.
    """
    counts = count_step_sessions([s["path"] for s in steps], session_paths)
    first = counts[0] if counts else 0

    results = []
    for i, step in enumerate(steps):
        sessions = counts[i]
        if first == 0:
            rate = dropoff = 0
        else:
            rate = _rate(sessions, first)
            dropoff = 0 if i == 0 else _rate(counts[i - 1] - sessions, counts[i - 1])
        results.append(
            {
                "path": step["path"],
                "label": step["label"],
                "sessions": sessions,
                "rate": rate,
                "dropoff": dropoff,
            }
        )
    return results


# ============== PERSISTENCE ==============


def sanitize_steps(steps: List[FunnelStepIn]) -> List[dict]:
    cleaned = []
    for step in steps:
        path = step.path or "/"
        cleaned.append({"path": path, "label": step.label or path})
    if not cleaned:
        raise MalformedPayload("funnel needs at least one step")
    return cleaned


def create_funnel(session: Session, site: Site, name: str, steps: List[FunnelStepIn]) -> Funnel:
    funnel = Funnel(site_id=site.id, name=name, steps=sanitize_steps(steps))
    session.add(funnel)
    session.commit()
    session.refresh(funnel)
    logger.info("funnel created", site_id=site.id, funnel_id=funnel.id, steps=len(funnel.steps))
    return funnel


def list_funnels(session: Session, site: Site) -> List[Funnel]:
    return list(
        session.exec(
            select(Funnel).where(Funnel.site_id == site.id).order_by(col(Funnel.created_at).desc())
        ).all()
    )


def get_site_funnel(session: Session, site: Site, funnel_id: int) -> Funnel:
    funnel = session.get(Funnel, funnel_id)
    if funnel is None or funnel.site_id != site.id:
        raise NotFound("funnel not found")
    return funnel


def replace_funnel(
    session: Session,
    site: Site,
    funnel_id: int,
    name: Optional[str] = None,
    steps: Optional[List[FunnelStepIn]] = None,
) -> Funnel:
    funnel = get_site_funnel(session, site, funnel_id)
    if name:
        funnel.name = name
    if steps is not None:
        funnel.steps = sanitize_steps(steps)
    funnel.updated_at = _utc_now()
    session.add(funnel)
    session.commit()
    session.refresh(funnel)
    return funnel


def run_funnel(
    session: Session,
    site: Site,
    funnel_id: int,
    days: int,
    now: Optional[datetime] = None,
) -> dict:
    """Evaluate a stored funnel over the site's sessions in the window."""
    funnel = get_site_funnel(session, site, funnel_id)
    pageviews = fetch_pageviews(session, site.id, window_start(days, now))

    sessions: Dict[str, list] = group_by_session(pageviews)
    session_paths = ([pv.path for pv in pvs] for pvs in sessions.values())

    return {
        "id": funnel.id,
        "name": funnel.name,
        "steps": evaluate_funnel(funnel.steps, session_paths),
    }
