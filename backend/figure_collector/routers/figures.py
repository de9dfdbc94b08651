"""Figures router: owner-scoped CRUD, filtering, stats and MFC scraping."""
from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from figure_collector.dependencies import (
    get_current_user_id,
    get_figure_store,
    get_optional_scraper_service,
    get_scraper_service,
)
from figure_collector.models.figure import (
    Figure,
    FigureCreate,
    FigurePage,
    FigureRead,
    FigureStats,
    FigureUpdate,
    StatBucket,
)
from figure_collector.services.figure_store import FigureStore, StoreUnavailable
from figure_collector.services.scraper import (
    MANUAL_EXTRACT_PREFIX,
    ScrapeError,
    ScrapedFigure,
    ScraperService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/figures", tags=["figures"])


class ScrapeRequest(BaseModel):
    mfc_link: str | None = Field(
        default=None, validation_alias=AliasChoices("mfc_link", "mfcLink")
    )


class ScrapeResponse(BaseModel):
    success: bool = True
    data: dict[str, str]


def _get_owned(store: FigureStore, user_id: str, figure_id: str) -> Figure:
    figure = store.get(user_id, figure_id)
    if figure is None:
        raise HTTPException(status_code=404, detail="Figure not found")
    return figure


def _page(figures: list[Figure], total: int, page: int, limit: int) -> FigurePage:
    return FigurePage(
        count=len(figures),
        page=page,
        pages=math.ceil(total / limit) if total else 0,
        total=total,
        data=[FigureRead.model_validate(f) for f in figures],
    )


async def _scrape_for_write(scraper: ScraperService | None, link: str) -> ScrapedFigure:
    """Scrape link for a create/update; an unavailable scraper yields nothing."""
    if scraper is None:
        logger.warning("Scraper not configured; skipping scrape of %s", link)
        return ScrapedFigure()
    try:
        return await scraper.scrape(link)
    except ScrapeError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _usable_image(url: str) -> str:
    return "" if url.startswith(MANUAL_EXTRACT_PREFIX) else url


def _unavailable() -> HTTPException:
    return HTTPException(status_code=500, detail="Figure store unavailable")


@router.get("", response_model=FigurePage)
async def list_figures(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
) -> FigurePage:
    """Newest-first page of the caller's figures."""
    try:
        figures, total = store.list_page(user_id, page, limit)
    except StoreUnavailable:
        raise _unavailable()
    return _page(figures, total, page, limit)


@router.post("", response_model=FigureRead, status_code=201)
async def create_figure(
    body: FigureCreate,
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
    scraper: ScraperService | None = Depends(get_optional_scraper_service),
) -> Figure:
    """Create a figure. Blank name/manufacturer/image are filled from source_link."""
    data = body.model_dump()
    link = body.source_link.strip()
    if link and not (body.name and body.manufacturer and body.image_url):
        scraped = await _scrape_for_write(scraper, link)
        data["source_link"] = link
        data["manufacturer"] = body.manufacturer or scraped.manufacturer
        data["name"] = body.name or scraped.name
        data["scale"] = body.scale or scraped.scale
        data["image_url"] = body.image_url or _usable_image(scraped.image_url)

    if not data["manufacturer"] or not data["name"]:
        raise HTTPException(
            status_code=400,
            detail="Manufacturer and name are required and could not be scraped",
        )

    try:
        figure = store.create(user_id, data)
    except StoreUnavailable:
        raise _unavailable()
    logger.info("Created figure %s for user %s", figure.id, user_id)
    return figure


@router.get("/filter", response_model=FigurePage)
async def filter_figures(
    manufacturer: str | None = Query(None),
    scale: str | None = Query(None),
    location: str | None = Query(None),
    box_number: str | None = Query(None, alias="boxNumber"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
) -> FigurePage:
    """Filter by manufacturer/location (contains) and scale/box number (exact)."""
    try:
        figures, total = store.list_page(
            user_id,
            page,
            limit,
            manufacturer=manufacturer or "",
            scale=scale or "",
            location=location or "",
            box_number=box_number or "",
        )
    except StoreUnavailable:
        raise _unavailable()
    return _page(figures, total, page, limit)


@router.get("/stats", response_model=FigureStats)
async def figure_stats(
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
) -> FigureStats:
    try:
        buckets = {
            field_name: [
                StatBucket(value=value, count=count)
                for value, count in store.count_by(user_id, field_name)
            ]
            for field_name in ("manufacturer", "scale", "location")
        }
    except StoreUnavailable:
        raise _unavailable()
    return FigureStats(
        total_count=sum(b.count for b in buckets["manufacturer"]),
        manufacturer_stats=buckets["manufacturer"],
        scale_stats=buckets["scale"],
        location_stats=buckets["location"],
    )


@router.post("/scrape", response_model=ScrapeResponse)
async def scrape_mfc(
    body: ScrapeRequest,
    _user_id: str = Depends(get_current_user_id),
    scraper: ScraperService = Depends(get_scraper_service),
):
    """Scrape an MFC item link. Unreachable pages yield a MANUAL_EXTRACT image_url."""
    try:
        scraped = await scraper.scrape(body.mfc_link)
    except ScrapeError as exc:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": str(exc)},
        )
    return ScrapeResponse(data=scraped.as_dict())


@router.get("/{figure_id}", response_model=FigureRead)
async def get_figure(
    figure_id: str,
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
) -> Figure:
    try:
        return _get_owned(store, user_id, figure_id)
    except StoreUnavailable:
        raise _unavailable()


@router.put("/{figure_id}", response_model=FigureRead)
async def update_figure(
    figure_id: str,
    body: FigureUpdate,
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
    scraper: ScraperService | None = Depends(get_optional_scraper_service),
) -> Figure:
    """Update a figure. A changed source_link re-extracts the image unless one is given."""
    try:
        figure = _get_owned(store, user_id, figure_id)
        data = body.model_dump(exclude_unset=True)
        link = (body.source_link or "").strip()
        if link and link != figure.source_link and not body.image_url:
            scraped = await _scrape_for_write(scraper, link)
            image_url = _usable_image(scraped.image_url)
            if image_url:
                data["image_url"] = image_url
        figure = store.update(figure, data)
    except StoreUnavailable:
        raise _unavailable()
    return figure


@router.delete("/{figure_id}")
async def delete_figure(
    figure_id: str,
    user_id: str = Depends(get_current_user_id),
    store: FigureStore = Depends(get_figure_store),
) -> dict:
    try:
        figure = _get_owned(store, user_id, figure_id)
        store.delete(figure)
    except StoreUnavailable:
        raise _unavailable()
    logger.info("Deleted figure %s for user %s", figure_id, user_id)
    return {"success": True, "message": "Figure removed successfully"}
