"""
Product Index Service — lookup indexes derived from the merged catalog.

Keys written on every recompute:
    product_index_kategorie:<name>  → [kod, ...]
    product_index_vyrobce:<name>    → [kod, ...]
    product_categories              → sorted distinct names
    product_manufacturers           → sorted distinct names
    product_price_range             → {min_price, max_price} over cena_s_dph > 0

Buckets of names that disappeared since the previous recompute are
overwritten with an empty list. The distinct-name lists are written last,
so a bucket whose clear failed is still listed and gets cleared again by
the next recompute.
"""

import asyncio
import logging
from typing import Any, Dict, List

from app.core.exceptions import CatalogIndexError, StorageError
from app.core.kv_store import KeyValueStore
from app.services.catalog_keys import (
    PRODUCT_CATEGORIES_KEY,
    PRODUCT_MANUFACTURERS_KEY,
    PRODUCT_PRICE_RANGE_KEY,
    category_index_key,
    manufacturer_index_key,
)

logger = logging.getLogger(__name__)


def build_indexes(products: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Category / manufacturer buckets and price range in one pass."""
    by_category: Dict[str, List[str]] = {}
    by_manufacturer: Dict[str, List[str]] = {}
    prices: List[float] = []

    for product in products:
        kod = product.get("kod")
        if not kod:
            continue
        kategorie = product.get("kategorie")
        if kategorie:
            by_category.setdefault(kategorie, []).append(kod)
        vyrobce = product.get("vyrobce")
        if vyrobce:
            by_manufacturer.setdefault(vyrobce, []).append(kod)
        price = product.get("cena_s_dph")
        if isinstance(price, (int, float)) and not isinstance(price, bool) and price > 0:
            prices.append(price)

    return {
        "categories": by_category,
        "manufacturers": by_manufacturer,
        "price_range": {
            "min_price": min(prices) if prices else 0,
            "max_price": max(prices) if prices else 0,
        },
    }


class ProductIndexService:
    """Writes the derived indexes."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _settle(self, writes: List[Any], phase: str) -> None:
        """Await a batch of writes as a unit; CatalogIndexError if any failed."""
        results = await asyncio.gather(*writes, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(
                "Index rebuild failed (%s: %d of %d writes): %s. "
                "The catalog projection is ahead of its indexes until the next successful recompute.",
                phase, len(failures), len(writes), failures[0],
            )
            raise CatalogIndexError(
                f"{len(failures)} of {len(writes)} index writes failed ({phase}): {failures[0]}"
            ) from failures[0]

    async def update_product_indexes(self, products: List[Dict[str, Any]]) -> None:
        """
        Rebuild and persist every index.

        Two phases: first every bucket (including the emptied ones), then the
        distinct-name lists and the price range. The lists drive the cleanup
        of vanished buckets on the next run, so they only advance once all
        bucket writes went through; a failed clear is retried next time.
        """
        indexes = build_indexes(products)
        categories: Dict[str, List[str]] = indexes["categories"]
        manufacturers: Dict[str, List[str]] = indexes["manufacturers"]

        try:
            previous_categories = await self.store.get_json(PRODUCT_CATEGORIES_KEY, default=[]) or []
            previous_manufacturers = await self.store.get_json(PRODUCT_MANUFACTURERS_KEY, default=[]) or []
        except StorageError as e:
            logger.error("Index rebuild aborted, previous indexes unreadable: %s", e)
            raise CatalogIndexError(f"Cannot read previous product indexes: {e}") from e

        buckets = [self.store.put_json(category_index_key(name), kods) for name, kods in categories.items()]
        buckets += [self.store.put_json(manufacturer_index_key(name), kods) for name, kods in manufacturers.items()]

        # emptied buckets
        buckets += [
            self.store.put_json(category_index_key(name), [])
            for name in previous_categories if name not in categories
        ]
        buckets += [
            self.store.put_json(manufacturer_index_key(name), [])
            for name in previous_manufacturers if name not in manufacturers
        ]
        await self._settle(buckets, "buckets")

        await self._settle([
            self.store.put_json(PRODUCT_CATEGORIES_KEY, sorted(categories)),
            self.store.put_json(PRODUCT_MANUFACTURERS_KEY, sorted(manufacturers)),
            self.store.put_json(PRODUCT_PRICE_RANGE_KEY, indexes["price_range"]),
        ], "name lists")

        logger.info(
            "Indexes updated: %d categories, %d manufacturers",
            len(categories), len(manufacturers),
        )
