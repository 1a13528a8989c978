"""
Site registry: public site key -> owning account + active flag.
"""

import re
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import delete, func
from sqlmodel import Session, col, select

from app.core.errors import InvalidSite, MalformedPayload, NotFound, TrackingError
from app.models.funnel import Funnel
from app.models.site import Site
from app.models.tracking import Click, Pageview, PointerBatch, ScrollSample
from app.models.user import User

logger = structlog.get_logger(__name__)


class DomainTaken(TrackingError):
    status_code = 409
    default_detail = "domain already registered"


def normalize_domain(domain: str) -> str:
    """``https://Example.com/`` -> ``example.com``"""
    cleaned = re.sub(r"^https?://", "", domain.strip(), flags=re.IGNORECASE)
    return cleaned.rstrip("/").lower()


def resolve_active_site(session: Session, site_key: str) -> Site:
    """Look up the site behind a tracker key; inactive sites are rejected."""
    site = session.exec(select(Site).where(Site.site_key == site_key)).first()
    if site is None or not site.is_active:
        logger.warning("rejected site key", site_key=site_key[:32], known=site is not None)
        raise InvalidSite()
    return site


def get_owned_site(session: Session, owner: User, site_id: int) -> Site:
    """Owner-scoped lookup; someone else's site is reported as missing."""
    site = session.get(Site, site_id)
    if site is None or site.user_id != owner.id:
        raise NotFound("site not found")
    return site


def register_site(session: Session, owner: User, domain: str, name: Optional[str] = None) -> Tuple[Site, bool]:
    """
    Register a domain for tracking.

    Returns:
        (site, created). Re-registering one's own domain returns the
        existing site with ``created=False``.
    """
    clean_domain = normalize_domain(domain)
    if not clean_domain:
        raise MalformedPayload("domain is required")

    existing = session.exec(select(Site).where(Site.domain == clean_domain)).first()
    if existing:
        if existing.user_id == owner.id:
            return existing, False
        raise DomainTaken()

    site = Site(user_id=owner.id, domain=clean_domain, name=name or clean_domain)
    session.add(site)
    session.commit()
    session.refresh(site)
    logger.info("site registered", site_id=site.id, domain=clean_domain)
    return site, True


def list_sites(session: Session, owner: User) -> List[Tuple[Site, int]]:
    """Owner's sites, newest first, with pageview totals."""
    rows = session.exec(
        select(Site, func.count(col(Pageview.id)))
        .join(Pageview, col(Pageview.site_id) == col(Site.id), isouter=True)
        .where(Site.user_id == owner.id)
        .group_by(col(Site.id))
        .order_by(col(Site.created_at).desc(), col(Site.id).desc())
    ).all()
    return [(site, count) for site, count in rows]


def set_site_active(session: Session, owner: User, site_id: int, active: bool) -> Site:
    site = get_owned_site(session, owner, site_id)
    site.is_active = active
    session.add(site)
    session.commit()
    session.refresh(site)
    logger.info("site activity changed", site_id=site.id, is_active=active)
    return site


def delete_site(session: Session, owner: User, site_id: int) -> None:
    """Delete a site and everything recorded for it."""
    site = get_owned_site(session, owner, site_id)

    pageview_ids = select(Pageview.id).where(Pageview.site_id == site.id)
    for model in (ScrollSample, Click, PointerBatch):
        session.execute(delete(model).where(col(model.pageview_id).in_(pageview_ids)))
    result = session.execute(delete(Pageview).where(col(Pageview.site_id) == site.id))
    session.execute(delete(Funnel).where(col(Funnel.site_id) == site.id))
    session.delete(site)
    session.commit()

    logger.info("site deleted", site_id=site_id, pageviews_deleted=result.rowcount or 0)
