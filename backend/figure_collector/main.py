from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import figure_collector.models  # noqa: F401  (registers SQLModel tables)

from figure_collector.config import get_settings
from figure_collector.db import create_db_and_tables
from figure_collector.routers import auth, figures, health, search, users
from figure_collector.services.scraper import ScraperService
from figure_collector.services.search_index import SearchIndex

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger("figure_collector").setLevel(settings.log_level.upper())
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    create_db_and_tables()

    # Word-wheel index sections are built lazily on each user's first search
    app.state.search_index = SearchIndex(max_sections=settings.search_index_max_sections)

    app.state.scraper_service = ScraperService(
        settings.scraper_service_url,
        timeout=settings.scraper_timeout_seconds,
    )

    yield

    # Shutdown: close scraper HTTP client
    if getattr(app.state, "scraper_service", None) is not None:
        await app.state.scraper_service.close()

    # Shutdown: drop in-memory index
    if getattr(app.state, "search_index", None) is not None:
        app.state.search_index.clear()


app = FastAPI(
    title="Figure Collector",
    description="Personal anime figure catalog with word-wheel search",
    version="1.0.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-New-Token"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth.router)
app.include_router(health.router)
app.include_router(users.router)
app.include_router(figures.router)
app.include_router(search.router)
