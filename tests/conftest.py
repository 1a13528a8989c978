"""
Test fixtures for behavior-tracker tests.

Provides database session fixtures, an API client bound to the test session,
and factories for sites and recorded traffic.
"""

import pytest
from datetime import datetime, timedelta
from typing import Generator, List, Optional
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db import get_session
from app.models.user import User, _utc_now
from app.models.site import Site
from app.models.tracking import Click, Pageview, ScrollSample

# Use in-memory SQLite for tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def clear_rate_limiters():
    """Clear the ingestion rate limiter before each test to prevent 429 errors."""
    from app.core.rate_limit import rate_limiter

    rate_limiter.clear()
    yield
    rate_limiter.clear()


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def client(test_session: Session):
    """Create test client with database session override."""

    def get_test_session():
        yield test_session

    app.dependency_overrides[get_session] = get_test_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_user(test_session: Session) -> User:
    user = User(email="owner@example.com")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user


@pytest.fixture
def other_user(test_session: Session) -> User:
    user = User(email="other@example.com")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(sample_user):
    """Create auth headers for authenticated requests."""
    from app.core.jwt import create_access_token

    token = create_access_token(sample_user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_site(test_session: Session, sample_user: User) -> Site:
    site = Site(user_id=sample_user.id, domain="example.com", name="Example")
    test_session.add(site)
    test_session.commit()
    test_session.refresh(site)
    return site


class TrafficFactory:
    """Writes pageviews, scroll samples and clicks straight to the database."""

    def __init__(self, session: Session, site: Site):
        self.session = session
        self.site = site
        self.base = _utc_now() - timedelta(hours=1)

    def pageview(
        self,
        session_id: str,
        path: str = "/",
        offset_seconds: int = 0,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> Pageview:
        pv = Pageview(
            site_id=self.site.id,
            session_id=session_id,
            url=f"https://{self.site.domain}{path}",
            path=path,
            created_at=created_at or self.base + timedelta(seconds=offset_seconds),
            **fields,
        )
        self.session.add(pv)
        self.session.commit()
        self.session.refresh(pv)
        return pv

    def session_walk(self, session_id: str, paths: List[str], start: int = 0, **fields) -> List[Pageview]:
        return [
            self.pageview(session_id, path, offset_seconds=start + i * 10, **fields)
            for i, path in enumerate(paths)
        ]

    def scroll(self, pv: Pageview, depth: int, dwell_ms: int = 0, zones: Optional[List[int]] = None) -> ScrollSample:
        sample = ScrollSample(pageview_id=pv.id, max_depth=depth, dwell_ms=dwell_ms, zones=zones)
        self.session.add(sample)
        self.session.commit()
        self.session.refresh(sample)
        return sample

    def click(self, pv: Pageview, x: int, y: int, offset_seconds: int = 0, **fields) -> Click:
        click = Click(
            pageview_id=pv.id,
            x=x,
            y=y,
            created_at=pv.created_at + timedelta(seconds=offset_seconds),
            **fields,
        )
        self.session.add(click)
        self.session.commit()
        self.session.refresh(click)
        return click


@pytest.fixture
def traffic(test_session: Session, sample_site: Site) -> TrafficFactory:
    return TrafficFactory(test_session, sample_site)
