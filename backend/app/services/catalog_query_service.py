"""
Catalog Query Service — read path over the catalog projection and indexes.

Filter order for ``get_products``:
    kategorie bucket → vyrobce bucket → search → price bounds → in stock
    → sort → pagination
"""

import logging
import math
from typing import Any, Dict, List, Optional

from app.core.exceptions import ProductNotFoundError
from app.core.kv_store import KeyValueStore
from app.services.catalog_keys import (
    PRODUCT_CATALOG_KEY,
    PRODUCT_CATEGORIES_KEY,
    PRODUCT_MANUFACTURERS_KEY,
    PRODUCT_PRICE_RANGE_KEY,
    category_index_key,
    manufacturer_index_key,
    product_key,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
SORTABLE_FIELDS = (
    "kod", "nazev", "cena_bez_dph", "cena_s_dph",
    "dostupnost", "kategorie", "vyrobce",
)


def _to_float(value: Any) -> Optional[float]:
    """Lenient numeric parse; None when the value is not a number."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return None


def _price(product: Dict[str, Any]) -> float:
    return _to_float(product.get("cena_s_dph")) or 0.0


def _in_stock(product: Dict[str, Any]) -> bool:
    stock = product.get("dostupnost")
    return isinstance(stock, (int, float)) and not isinstance(stock, bool) and stock > 0


def sort_products(
    products: List[Dict[str, Any]],
    sort_field: str,
    sort_direction: str = "asc",
) -> List[Dict[str, Any]]:
    """
    Stable sort on one projection field.

    Text compares case-insensitively, numbers before text, missing values
    always last regardless of direction.
    """
    present = [p for p in products if p.get(sort_field) not in (None, "")]
    missing = [p for p in products if p.get(sort_field) in (None, "")]

    def key(product: Dict[str, Any]):
        value = product[sort_field]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, value, "")
        return (1, 0, str(value).lower())

    present.sort(key=key, reverse=(sort_direction or "asc").lower() == "desc")
    return present + missing


class CatalogQueryService:
    """List, detail and lookup queries."""

    def __init__(self, store: KeyValueStore, default_page_size: int = DEFAULT_PAGE_SIZE):
        self.store = store
        self.default_page_size = default_page_size

    async def get_products(
        self,
        kategorie: Optional[str] = None,
        vyrobce: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        price_min: Any = None,
        price_max: Any = None,
        in_stock: bool = False,
        sort_field: Optional[str] = None,
        sort_direction: str = "asc",
    ) -> Dict[str, Any]:
        """
        Filtered, paginated slice of the catalog projection.

        Args:
            kategorie: category name, matched through its index bucket
            vyrobce: manufacturer name, matched through its index bucket
            search: case-insensitive substring of kod or nazev
            page: 1-based page number
            limit: page size (default 50)
            price_min / price_max: inclusive bounds on cena_s_dph,
                unparsable values are ignored
            in_stock: only products with numeric dostupnost > 0
            sort_field: one of SORTABLE_FIELDS, anything else leaves the
                catalog order
            sort_direction: "asc" or "desc"

        Returns:
            {"products": [...], "pagination": {...}, "lastUpdated": str | None}
        """
        limit = self.default_page_size if limit is None else limit

        catalog = await self.store.get_json(PRODUCT_CATALOG_KEY) or {}
        products: List[Dict[str, Any]] = list(catalog.get("products") or [])

        # a bucket left behind by a failed index write may still list a code
        # that moved; the projection entry has the final say
        if kategorie:
            codes = set(await self.store.get_json(category_index_key(kategorie), default=[]) or [])
            products = [p for p in products if p.get("kod") in codes and p.get("kategorie") == kategorie]

        if vyrobce:
            codes = set(await self.store.get_json(manufacturer_index_key(vyrobce), default=[]) or [])
            products = [p for p in products if p.get("kod") in codes and p.get("vyrobce") == vyrobce]

        term = (search or "").strip().lower()
        if term:
            products = [
                p for p in products
                if term in str(p.get("kod") or "").lower() or term in str(p.get("nazev") or "").lower()
            ]

        low = _to_float(price_min)
        if low is not None:
            products = [p for p in products if _price(p) >= low]
        high = _to_float(price_max)
        if high is not None:
            products = [p for p in products if _price(p) <= high]

        if in_stock:
            products = [p for p in products if _in_stock(p)]

        if sort_field:
            if sort_field in SORTABLE_FIELDS:
                products = sort_products(products, sort_field, sort_direction)
            else:
                logger.debug("Ignoring unknown sort field %r", sort_field)

        total = len(products)
        start = (page - 1) * limit
        page_items = products[start:start + limit] if limit > 0 else []

        return {
            "products": page_items,
            "pagination": {
                "page": page,
                "limit": limit,
                "totalProducts": total,
                "totalPages": math.ceil(total / limit) if limit > 0 else 0,
            },
            "lastUpdated": catalog.get("last_updated"),
        }

    async def get_product_detail(self, kod: str) -> Dict[str, Any]:
        """Full merged record, ProductNotFoundError if absent."""
        product = await self.store.get_json(product_key(kod))
        if product is None:
            raise ProductNotFoundError(kod)
        return product

    async def get_product_categories(self) -> List[str]:
        return await self.store.get_json(PRODUCT_CATEGORIES_KEY, default=[]) or []

    async def get_product_manufacturers(self) -> List[str]:
        return await self.store.get_json(PRODUCT_MANUFACTURERS_KEY, default=[]) or []

    async def get_product_price_range(self) -> Dict[str, float]:
        price_range = await self.store.get_json(PRODUCT_PRICE_RANGE_KEY) or {}
        return {
            "min_price": price_range.get("min_price", 0),
            "max_price": price_range.get("max_price", 0),
        }
