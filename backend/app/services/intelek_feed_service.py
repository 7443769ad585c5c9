"""
Intelek Feed Service — download the vendor price export and stage it.

    GET {intelek_feed_url}?level=<level>&xml=true&x=<token>

The products are stored as source ``intelek_xml``. That source is kept and
recorded in the import history but is not one of the merge inputs.
"""

import logging
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from app.config import Settings, get_settings
from app.core.exceptions import FeedDownloadError
from app.parsers.intelek_parser import parse_intelek_xml
from app.schemas.product import ProductRecord, SourceTag
from app.services.product_import_service import ProductImportService

logger = logging.getLogger(__name__)


def build_feed_url(settings: Settings) -> str:
    """Export URL from settings; the token is pre-encoded by the vendor."""
    query = urlencode({"level": settings.intelek_feed_level, "xml": "true"})
    url = f"{settings.intelek_feed_url}?{query}"
    if settings.intelek_feed_token:
        url += f"&x={settings.intelek_feed_token}"
    return url


class IntelekFeedService:
    """Fetches, parses and imports the vendor feed."""

    def __init__(
        self,
        importer: ProductImportService,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.importer = importer
        self.settings = settings or get_settings()
        self._client = http_client

    async def _download(self, url: str) -> bytes:
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.settings.feed_http_timeout) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error("Intelek feed request failed: %s", e)
            raise FeedDownloadError(f"Intelek feed request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Intelek feed download error: status=%s body=%s",
                response.status_code, response.text[:200],
            )
            raise FeedDownloadError(f"Intelek feed returned HTTP {response.status_code}")

        logger.info("Downloaded %d bytes of Intelek XML", len(response.content))
        return response.content

    async def fetch_products(self, url: Optional[str] = None) -> List[ProductRecord]:
        """Download and parse the feed (explicit ``url`` overrides settings)."""
        target = url or build_feed_url(self.settings)
        raw = await self._download(target)
        return parse_intelek_xml(
            raw,
            default_category=self.settings.intelek_default_category,
            default_manufacturer=self.settings.intelek_default_manufacturer,
        )

    async def import_feed(self, url: Optional[str] = None) -> int:
        """Fetch and store as ``intelek_xml``; returns the stored count (0 stores nothing)."""
        products = await self.fetch_products(url)
        if not products:
            logger.warning("Intelek feed contained no valid products, nothing stored")
            return 0
        return await self.importer.store_products_from_source(
            products, SourceTag.INTELEK_XML, filename="intelek_feed.xml",
        )
