"""
Site registry endpoints for the dashboard.
"""

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from app.api import deps
from app.db import get_session
from app.models.user import User
from app.schemas import SiteCreate, SiteUpdate
from app.services import sites as site_service

router = APIRouter()


def _site_out(site) -> dict:
    return {
        "id": site.id,
        "site_key": site.site_key,
        "domain": site.domain,
        "name": site.name,
        "is_active": site.is_active,
        "created_at": site.created_at.isoformat(),
    }


@router.get("")
def list_sites(
    session: Session = Depends(get_session),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    return {
        "sites": [
            {**_site_out(site), "pageview_count": count}
            for site, count in site_service.list_sites(session, current_user)
        ]
    }


@router.post("")
def register_site(
    body: SiteCreate,
    response: Response,
    session: Session = Depends(get_session),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    site, created = site_service.register_site(session, current_user, body.domain, body.name)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _site_out(site)


@router.patch("/{site_id}")
def update_site(
    site_id: int,
    body: SiteUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    site = site_service.set_site_active(session, current_user, site_id, body.is_active)
    return _site_out(site)


@router.delete("/{site_id}")
def delete_site(
    site_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    site_service.delete_site(session, current_user, site_id)
    return {"ok": True}
