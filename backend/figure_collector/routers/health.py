from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from figure_collector.db import get_session

router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "figure-collector-backend"
VERSION = "1.0.0"


@router.get("/health")
async def health(request: Request, session: Session = Depends(get_session)):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    # Search index is optional; search falls back to store scans without it
    index_status = "ok" if getattr(request.app.state, "search_index", None) is not None else "unavailable"
    scraper_status = (
        "configured" if getattr(request.app.state, "scraper_service", None) is not None else "not_configured"
    )

    return {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "checks": {
            "database": db_status,
            "search_index": index_status,
            "scraper": scraper_status,
        },
    }


@router.get("/health/ready")
async def readiness(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": SERVICE_NAME,
                "error": str(exc),
            },
        )

    return {
        "status": "ready",
        "service": SERVICE_NAME,
    }
