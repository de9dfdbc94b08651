"""FastAPI dependency injection for auth, the figure store, search and scraping."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from figure_collector.config import get_settings
from figure_collector.db import get_session
from figure_collector.routers.auth import create_access_token, decode_token
from figure_collector.services.figure_store import FigureStore
from figure_collector.services.scraper import ScraperService
from figure_collector.services.search import SearchEngine
from figure_collector.services.search_index import SearchIndex

_bearer_scheme = HTTPBearer(auto_error=True)


def get_current_user_id(
    response: Response,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Extract and validate the JWT access token from the Authorization header.

    Returns the user id (sub claim). Raises HTTPException 401 if the token is
    missing, expired, or invalid. Tokens close to expiry get a fresh access
    token in the X-New-Token response header.
    """
    payload = decode_token(credentials.credentials, "access")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    exp = payload.get("exp")
    if exp is not None:
        remaining = exp - datetime.now(timezone.utc).timestamp()
        if remaining < get_settings().token_refresh_threshold_minutes * 60:
            response.headers["X-New-Token"] = create_access_token(user_id)
    return user_id


def get_search_index(request: Request) -> SearchIndex | None:
    """Inject the process-wide SearchIndex created at startup, if any.

    Search falls back to store scans when it is missing.
    """
    return getattr(request.app.state, "search_index", None)


def get_figure_store(
    session: Session = Depends(get_session),
    index: SearchIndex | None = Depends(get_search_index),
) -> FigureStore:
    """Construct a FigureStore that keeps the search index in step with writes."""
    return FigureStore(session, index)


def get_search_engine(
    store: FigureStore = Depends(get_figure_store),
    index: SearchIndex | None = Depends(get_search_index),
) -> SearchEngine:
    return SearchEngine(store, index)


def get_scraper_service(request: Request) -> ScraperService:
    """Inject the ScraperService singleton from app state."""
    svc = getattr(request.app.state, "scraper_service", None)
    if svc is None:
        raise HTTPException(
            status_code=503,
            detail="Scraper service unavailable",
        )
    return svc


def get_optional_scraper_service(request: Request) -> ScraperService | None:
    """ScraperService if configured; figure writes still work without it."""
    return getattr(request.app.state, "scraper_service", None)
