"""MFC scraper: figure details from a MyFigureCollection item page.

The external page-scraper service does the heavy lifting (it drives a real
browser). When it is unreachable or answers with an error, the item page is
fetched directly and the main picture is read from the HTML. When both fail,
the caller gets empty fields and an image_url marked for manual extraction.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from urllib.parse import urlparse

import httpx
from lxml import html as lxml_html
from lxml.etree import ParserError

logger = logging.getLogger(__name__)

MFC_HOST = "myfigurecollection.net"
MANUAL_EXTRACT_PREFIX = "MANUAL_EXTRACT:"


class ScrapeError(ValueError):
    """The link cannot be scraped (missing, malformed, or not an MFC URL)."""


@dataclass(frozen=True, slots=True)
class ScrapedFigure:
    manufacturer: str = ""
    name: str = ""
    scale: str = ""
    image_url: str = ""

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    @property
    def is_empty(self) -> bool:
        return not any((self.manufacturer, self.name, self.scale, self.image_url))


def validate_mfc_link(link: str | None) -> str:
    """Return the trimmed link or raise ScrapeError."""
    if not link or not link.strip():
        raise ScrapeError("MFC link is required")
    link = link.strip()
    parsed = urlparse(link)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ScrapeError("Invalid URL format")
    host = (parsed.hostname or "").lower()
    if host != MFC_HOST and not host.endswith("." + MFC_HOST):
        raise ScrapeError(f"URL must be from {MFC_HOST}")
    return link


def extract_image_url(page: str | bytes) -> str | None:
    """Main item picture from an MFC item page, or None if absent."""
    try:
        tree = lxml_html.fromstring(page)
    except (ParserError, ValueError):
        return None
    candidates = tree.xpath(
        "//*[contains(concat(' ', normalize-space(@class), ' '), ' item-picture ')]"
        "//*[contains(concat(' ', normalize-space(@class), ' '), ' main ')]//img/@src"
    )
    if not candidates:
        candidates = tree.xpath(
            "//*[contains(concat(' ', normalize-space(@class), ' '), ' item-picture ')]//img/@src"
        )
    return str(candidates[0]).strip() if candidates else None


class ScraperService:
    """Scrapes MFC item pages through the page-scraper service with a direct fallback."""

    USER_AGENT = "FigureCollector/1.0 (+https://github.com/figure-collector)"

    def __init__(self, service_url: str, timeout: float = 30.0) -> None:
        self._service_url = service_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": self.USER_AGENT},
        )

    async def close(self) -> None:
        """Close the shared HTTP client."""
        await self._client.aclose()

    async def scrape(self, link: str) -> ScrapedFigure:
        """Scrape an MFC item link. Raises ScrapeError only for invalid links.

        Network and parsing failures never propagate: the result then carries
        ``MANUAL_EXTRACT:<link>`` as image_url so the client can ask the user.
        """
        link = validate_mfc_link(link)

        scraped = await self._scrape_via_service(link)
        if scraped is not None:
            return scraped

        image_url = await self._extract_image_directly(link)
        if image_url:
            return ScrapedFigure(image_url=image_url)

        return ScrapedFigure(image_url=f"{MANUAL_EXTRACT_PREFIX}{link}")

    async def _scrape_via_service(self, link: str) -> ScrapedFigure | None:
        try:
            response = await self._client.post(
                f"{self._service_url}/scrape/mfc", json={"url": link}
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Page scraper service failed for %s", link, exc_info=True)
            return None

        if not isinstance(payload, dict) or not payload.get("success"):
            logger.warning("Page scraper service returned no data for %s", link)
            return None

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            return ScrapedFigure()
        return ScrapedFigure(
            manufacturer=str(data.get("manufacturer") or "").strip(),
            name=str(data.get("name") or "").strip(),
            scale=str(data.get("scale") or "").strip(),
            image_url=str(data.get("imageUrl") or data.get("image_url") or "").strip(),
        )

    async def _extract_image_directly(self, link: str) -> str | None:
        try:
            response = await self._client.get(link)
            response.raise_for_status()
        except httpx.HTTPError:
            logger.warning("Direct fetch of %s failed", link, exc_info=True)
            return None
        return extract_image_url(response.content)
