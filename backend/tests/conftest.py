from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

# Set test environment BEFORE importing figure_collector modules.
# figure_collector.db creates the engine at module level using
# get_settings().db_url, so the env vars must be in place first.
_test_tmp = tempfile.mkdtemp(prefix="figure-collector-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-integration-tests-only")
os.environ.setdefault("SCRAPER_SERVICE_URL", "http://scraper.test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from figure_collector.db import get_session
from figure_collector.dependencies import (
    get_current_user_id,
    get_optional_scraper_service,
    get_scraper_service,
    get_search_index,
)
from figure_collector.main import app as fastapi_app
from figure_collector.models.figure import Figure
from figure_collector.models.user import User
from figure_collector.services.figure_store import FigureStore
from figure_collector.services.scraper import ScrapedFigure
from figure_collector.services.search import SearchEngine
from figure_collector.services.search_index import SearchIndex
from figure_collector.utils.crypto import hash_password

TEST_PASSWORD = "correct-horse-battery"


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection shares the same in-memory database.
    Recreates tables per test for full isolation.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


def make_user(session: Session, username: str, email: str | None = None) -> User:
    user = User(
        username=username,
        email=email or f"{username}@example.com",
        password_hash=hash_password(TEST_PASSWORD),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_figure(
    session: Session,
    owner: User,
    name: str,
    manufacturer: str = "Good Smile Company",
    *,
    age_minutes: int = 0,
    **extra: str,
) -> Figure:
    """Insert a figure straight into the database, bypassing the index."""
    figure = Figure(
        owner_id=owner.id,
        name=name,
        manufacturer=manufacturer,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
        **extra,
    )
    session.add(figure)
    session.commit()
    session.refresh(figure)
    return figure


@pytest.fixture(name="user")
def user_fixture(session) -> User:
    return make_user(session, "collector")


@pytest.fixture(name="other_user")
def other_user_fixture(session) -> User:
    return make_user(session, "rival")


# ── Search fixtures ───────────────────────────────────────────────────


@pytest.fixture(name="index")
def index_fixture() -> SearchIndex:
    return SearchIndex()


@pytest.fixture(name="store")
def store_fixture(session, index) -> FigureStore:
    return FigureStore(session, index)


@pytest.fixture(name="engine_svc")
def search_engine_fixture(store, index) -> SearchEngine:
    return SearchEngine(store, index)


# ── Scraper fixture ───────────────────────────────────────────────────


@pytest.fixture(name="scraper")
def scraper_fixture() -> MagicMock:
    """ScraperService stand-in; tests set scrape.return_value as needed."""
    scraper = MagicMock()
    scraper.scrape = AsyncMock(return_value=ScrapedFigure())
    scraper.close = AsyncMock()
    return scraper


# ── HTTP client fixtures ──────────────────────────────────────────────


def _install_overrides(session, index, scraper) -> None:
    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_search_index] = lambda: index
    fastapi_app.dependency_overrides[get_scraper_service] = lambda: scraper
    fastapi_app.dependency_overrides[get_optional_scraper_service] = lambda: scraper


@pytest.fixture(name="client")
def client_fixture(session, index, scraper, user):
    """FastAPI TestClient authenticated as `user` via dependency override."""
    _install_overrides(session, index, scraper)
    fastapi_app.dependency_overrides[get_current_user_id] = lambda: user.id
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(name="client_no_auth")
def client_no_auth_fixture(session, index, scraper):
    """TestClient with DB override but NO auth override, for testing 401s."""
    _install_overrides(session, index, scraper)
    with TestClient(fastapi_app) as tc:
        yield tc
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(name="auth_client")
def auth_client_fixture(client_no_auth):
    """TestClient that performs a REAL registration and carries its bearer token.

    The token response is available as ``auth_client.tokens``.
    """
    resp = client_no_auth.post("/api/auth/register", json={
        "username": "realuser",
        "email": "realuser@example.com",
        "password": TEST_PASSWORD,
    })
    assert resp.status_code == 201, resp.text
    tokens = resp.json()
    client_no_auth.headers["Authorization"] = f"Bearer {tokens['access_token']}"
    client_no_auth.tokens = tokens
    yield client_no_auth
