from typing import Optional
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session, select

from app.db import get_session
from app.models.site import Site
from app.models.user import User
from app.core.context import set_user_id
from app.core.jwt import decode_access_token
from app.services.sites import get_owned_site

# Cookie name for auth token
COOKIE_NAME = "access_token"

# Tokens are issued by the external auth provider; this app only verifies them
bearer_scheme = HTTPBearer(auto_error=False)


def get_token_from_request(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials] = None
) -> Optional[str]:
    """
    Extract token from Authorization header or cookie.
    Priority: Header > Cookie
    """
    if credentials and credentials.credentials:
        return credentials.credentials

    cookie_token = request.cookies.get(COOKIE_NAME)
    if cookie_token:
        return cookie_token

    return None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    """
    Get current user from JWT token (header or cookie).
    """
    token = get_token_from_request(request, credentials)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    email = decode_access_token(token)
    if email is None:
        raise credentials_exception

    user = session.exec(select(User).where(User.email == email)).first()
    if user is None or not user.is_active:
        raise credentials_exception

    set_user_id(user.id)
    return user


def get_site_for_owner(
    site_id: int = Query(..., alias="siteId"),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Site:
    """Site named by the ``siteId`` query parameter, owned by the caller."""
    return get_owned_site(session, current_user, site_id)
