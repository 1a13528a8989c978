"""
Owner-scoped query endpoints: heatmaps, click logs, sessions, analytics
and funnels.

Query parameters keep the dashboard's camelCase names (``siteId``,
``pageSize``, ...); responses are snake_case.
"""

from datetime import date
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from app.api import deps
from app.core.errors import MalformedPayload
from app.db import get_session
from app.models.funnel import Funnel
from app.models.site import Site
from app.models.user import User
from app.schemas import FunnelCreate, FunnelUpdate
from app.services import analytics, clicks, funnel, heatmap, sessions
from app.services.sites import get_owned_site

router = APIRouter()

Days = Annotated[int, Query(ge=1, le=365)]


def _funnel_out(f: Funnel) -> dict:
    return {
        "id": f.id,
        "site_id": f.site_id,
        "name": f.name,
        "steps": f.steps,
        "created_at": f.created_at.isoformat(),
        "updated_at": f.updated_at.isoformat(),
    }


# ============== HEATMAP ==============


@router.get("/data")
def heatmap_data(
    path: str = Query("/"),
    days: Days = 30,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return heatmap.build_page_heatmap(session, site, path, days)


@router.get("/compare")
def heatmap_compare(
    start_a: date = Query(..., alias="startA"),
    end_a: date = Query(..., alias="endA"),
    start_b: date = Query(..., alias="startB"),
    end_b: date = Query(..., alias="endB"),
    path: str = Query("/"),
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    if start_a > end_a or start_b > end_b:
        raise MalformedPayload("period start must not be after its end")
    return heatmap.compare_periods(session, site, path, (start_a, end_a), (start_b, end_b))


# ============== CLICKS ==============


@router.get("/clicks")
def click_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(30, ge=1, le=100, alias="pageSize"),
    days: Days = 30,
    path: Optional[str] = None,
    selector: Optional[str] = None,
    has_href: Optional[bool] = Query(None, alias="hasHref"),
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return clicks.click_log(
        session,
        site,
        days,
        page=page,
        page_size=page_size,
        path=path,
        selector_contains=selector,
        has_href=has_href,
    )


@router.get("/rage-clicks")
def rage_clicks(
    days: Days = 30,
    path: Optional[str] = None,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return clicks.rage_dead_rollup(session, site, days, path=path)


# ============== SESSIONS ==============


@router.get("/sessions")
def list_sessions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    days: Days = 30,
    path: Optional[str] = None,
    device: Optional[str] = None,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return sessions.list_sessions(session, site, days, page=page, page_size=page_size, path=path, device=device)


@router.get("/sessions/{session_id}")
def session_detail(
    session_id: str,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return sessions.session_timeline(session, site, session_id)


@router.get("/sessions/{session_id}/pointer")
def session_pointer(
    session_id: str,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return sessions.export_pointer_batches(session, site, session_id)


# ============== ANALYTICS ==============


@router.get("/analytics")
def site_analytics(
    days: Days = 30,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return analytics.site_rollup(session, site, days)


@router.get("/realtime")
def realtime(
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return analytics.realtime(session, site)


@router.get("/utm")
def utm(
    days: Days = 30,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return analytics.utm_breakdown(session, site, days)


# ============== FUNNELS ==============


@router.get("/funnels")
def list_funnels(
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return {"funnels": [_funnel_out(f) for f in funnel.list_funnels(session, site)]}


@router.post("/funnels", status_code=status.HTTP_201_CREATED)
def create_funnel(
    body: FunnelCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    site = get_owned_site(session, current_user, body.site_id)
    return _funnel_out(funnel.create_funnel(session, site, body.name, body.steps))


@router.put("/funnels/{funnel_id}")
def update_funnel(
    funnel_id: int,
    body: FunnelUpdate,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return _funnel_out(funnel.replace_funnel(session, site, funnel_id, name=body.name, steps=body.steps))


@router.get("/funnels/{funnel_id}")
def evaluate_funnel(
    funnel_id: int,
    days: Days = 30,
    site: Site = Depends(deps.get_site_for_owner),
    session: Session = Depends(get_session),
) -> Any:
    return funnel.run_funnel(session, site, funnel_id, days)
