"""Search router: word-wheel suggestions and partial matches over the user's figures."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from figure_collector.config import get_settings
from figure_collector.dependencies import get_current_user_id, get_search_engine
from figure_collector.models.figure import FigureRead
from figure_collector.services.figure_store import StoreUnavailable
from figure_collector.services.query_validator import SearchValidationError, validate
from figure_collector.services.search import SearchEngine, SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


class SearchResponse(BaseModel):
    """Search envelope: matching figures and how many were returned."""
    success: bool = True
    data: list[FigureRead]
    count: int


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


def _respond(result: SearchResult) -> SearchResponse:
    return SearchResponse(
        data=[FigureRead.model_validate(f) for f in result.figures],
        count=result.count,
    )


# limit/offset arrive as raw strings so malformed values get the search
# error envelope instead of FastAPI's 422.


@router.get("/suggestions", response_model=SearchResponse)
async def suggestions(
    q: str | None = Query(None, description="Prefix to complete"),
    limit: str | None = Query(None, description="Max suggestions (capped server-side)"),
    user_id: str = Depends(get_current_user_id),
    engine: SearchEngine = Depends(get_search_engine),
):
    """Word-wheel search: figures with a name or manufacturer word starting with q."""
    settings = get_settings()
    try:
        query = validate(
            q,
            limit,
            owner_id=user_id,
            default_limit=settings.search_default_limit,
            max_limit=settings.search_max_limit,
            min_length=settings.search_min_query_length,
        )
        result = engine.word_wheel_search(query)
    except SearchValidationError as exc:
        return _error(exc.status_code, exc.message)
    except StoreUnavailable:
        logger.exception("Word-wheel search failed for user %s", user_id)
        return _error(500, "An error occurred while fetching search suggestions")
    return _respond(result)


@router.get("/partial", response_model=SearchResponse)
async def partial(
    q: str | None = Query(None, description="Substring to match"),
    limit: str | None = Query(None, description="Page size (capped server-side)"),
    offset: str | None = Query(None, description="Results to skip"),
    user_id: str = Depends(get_current_user_id),
    engine: SearchEngine = Depends(get_search_engine),
):
    """Partial search: figures whose name or manufacturer contains q, paged."""
    settings = get_settings()
    try:
        query = validate(
            q,
            limit,
            offset,
            owner_id=user_id,
            default_limit=settings.search_default_limit,
            max_limit=settings.search_max_limit,
            min_length=settings.search_min_query_length,
        )
        result = engine.partial_search(query)
    except SearchValidationError as exc:
        return _error(exc.status_code, exc.message)
    except StoreUnavailable:
        logger.exception("Partial search failed for user %s", user_id)
        return _error(500, "An error occurred while fetching partial matches")
    return _respond(result)
