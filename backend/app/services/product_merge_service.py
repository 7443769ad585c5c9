"""
Product Merge Service — rebuilds the canonical catalog from the source lists.

Three passes in strict order, keyed by ``kod``:
    1. xml_cenik   (base)     — seeds the map with full records
    2. xml_popisky (enrich)   — fills empty descriptive fields only
    3. excel       (override) — truthy incoming values win, numeric dostupnost wins

Outputs:
    product_catalog   — {last_updated, total_products, products[projection]}
    products:<kod>    — full MergedProduct, written in concurrent batches
    indexes           — delegated to ProductIndexService

A recompute reads every input before it writes anything and then overwrites
all of its keys, so re-running it after a partial failure converges to a
consistent catalog. Detail records of codes that left every source are
deleted before the new projection is written: the previous projection is
what lists them, so a failed delete is retried by the next recompute.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from app.core.exceptions import MergeError
from app.core.kv_store import KeyValueStore
from app.core.timeutils import utc_now_iso
from app.schemas.product import SourceTag
from app.services.catalog_keys import PRODUCT_CATALOG_KEY, product_key, source_key
from app.services.product_index_service import ProductIndexService

logger = logging.getLogger(__name__)

# ── Field groups ───────────────────────────────────────────
DESCRIPTIVE_FIELDS = (
    "kategorie", "vyrobce", "dodani", "minodber", "jednotka",
    "popis", "kratky_popis", "obrazek", "parametry", "dokumenty",
)
EXCEL_OVERRIDE_FIELDS = ("nazev", "ean", "cena_bez_dph", "cena_s_dph") + DESCRIPTIVE_FIELDS
PROJECTION_FIELDS = (
    "kod", "nazev", "cena_bez_dph", "cena_s_dph",
    "dostupnost", "kategorie", "vyrobce", "merged_sources",
)
DEFAULT_WRITE_BATCH_SIZE = 50


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    """Falsy in the feed sense: None, "" and 0 count as missing."""
    return value is None or value == "" or (_is_number(value) and value == 0)


def _index_by_kod(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Collapse a source list to one record per kod.

    The last record wins, the first position is kept. Records without a kod
    are dropped.
    """
    by_kod: Dict[str, Dict[str, Any]] = {}
    for record in records:
        kod = str(record.get("kod") or "").strip()
        if not kod:
            continue
        by_kod[kod] = {**record, "kod": kod}
    return by_kod


def project(product: Dict[str, Any]) -> Dict[str, Any]:
    """Compact catalog entry of a merged product."""
    entry = {field: product.get(field) for field in PROJECTION_FIELDS}
    entry["merged_sources"] = list(product.get("merged_sources") or [])
    return entry


def merge_sources(
    cenik: List[Dict[str, Any]],
    popisky: List[Dict[str, Any]],
    excel: List[Dict[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    """
    Pure three-pass merge.

    Returns:
        kod → merged product, in insertion order (cenik entries first, then
        popisky-only entries, then excel-only entries).
    """
    merged: Dict[str, Dict[str, Any]] = {}

    # Pass 1: base
    for kod, record in _index_by_kod(cenik).items():
        merged[kod] = {**record, "merged_sources": [SourceTag.XML_CENIK.value]}

    # Pass 2: enrich, existing non-empty values are never overwritten
    for kod, record in _index_by_kod(popisky).items():
        existing = merged.get(kod)
        if existing is None:
            merged[kod] = {**record, "merged_sources": [SourceTag.XML_POPISKY.value]}
            continue
        for field in DESCRIPTIVE_FIELDS:
            if _is_empty(existing.get(field)) and not _is_empty(record.get(field)):
                existing[field] = record[field]
        existing["merged_sources"].append(SourceTag.XML_POPISKY.value)

    # Pass 3: override, spreadsheet corrections win when they carry a value
    for kod, record in _index_by_kod(excel).items():
        existing = merged.get(kod)
        if existing is None:
            merged[kod] = {**record, "merged_sources": [SourceTag.EXCEL.value]}
            continue
        for field in EXCEL_OVERRIDE_FIELDS:
            if not _is_empty(record.get(field)):
                existing[field] = record[field]
        # 0 is a real stock level
        if _is_number(record.get("dostupnost")):
            existing["dostupnost"] = record["dostupnost"]
        existing["merged_sources"].append(SourceTag.EXCEL.value)

    return merged


class ProductMergeService:
    """Reads the three source lists, merges them and persists the result."""

    def __init__(
        self,
        store: KeyValueStore,
        index_service: Optional[ProductIndexService] = None,
        batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.store = store
        self.index_service = index_service or ProductIndexService(store)
        self.batch_size = max(1, batch_size)
        self.clock = clock

    async def _load_source(self, source: SourceTag) -> List[Dict[str, Any]]:
        """
        Stored list of one source.

        An absent key is an empty list. A present key that is not valid JSON,
        or not a list of objects, raises MergeError.
        """
        raw = await self.store.get(source_key(source.value))
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MergeError(
                f"Stored products of source '{source.value}' are corrupt: {e}",
                source=source.value,
            ) from e
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise MergeError(
                f"Stored products of source '{source.value}' are not a list of records",
                source=source.value,
            )
        return data

    async def _previous_codes(self) -> List[str]:
        """Codes listed by the stored projection (empty if absent or unreadable)."""
        raw = await self.store.get(PRODUCT_CATALOG_KEY)
        if raw is None:
            return []
        try:
            return [p["kod"] for p in json.loads(raw).get("products") or [] if p.get("kod")]
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Previous catalog projection unreadable, no detail records pruned: %s", e)
            return []

    async def _delete_products(self, codes: List[str]) -> None:
        for start in range(0, len(codes), self.batch_size):
            batch = codes[start:start + self.batch_size]
            await asyncio.gather(*(self.store.delete(product_key(kod)) for kod in batch))

    async def _write_products(self, products: List[Dict[str, Any]]) -> None:
        """Per-product detail records, one concurrent batch at a time."""
        for start in range(0, len(products), self.batch_size):
            batch = products[start:start + self.batch_size]
            await asyncio.gather(*(
                self.store.put_json(product_key(p["kod"]), p) for p in batch
            ))

    async def recompute(self) -> int:
        """
        Rebuild catalog, detail records and indexes from the current sources.

        Returns:
            Number of distinct merged products.

        Raises:
            MergeError: a stored source list is corrupt (nothing is written).
            StorageError: a store read or write failed.
            CatalogIndexError: the catalog was written but its indexes were not.
        """
        started = time.monotonic()

        cenik = await self._load_source(SourceTag.XML_CENIK)
        popisky = await self._load_source(SourceTag.XML_POPISKY)
        excel = await self._load_source(SourceTag.EXCEL)
        previous = await self._previous_codes()

        merged = merge_sources(cenik, popisky, excel)
        products = list(merged.values())
        gone = [kod for kod in previous if kod not in merged]

        if gone:
            await self._delete_products(gone)
            logger.info("Removed %d products no longer present in any source", len(gone))

        catalog = {
            "last_updated": self.clock(),
            "total_products": len(products),
            "products": [project(p) for p in products],
        }
        await self.store.put_json(PRODUCT_CATALOG_KEY, catalog)
        await self._write_products(products)
        await self.index_service.update_product_indexes(products)

        logger.info(
            "Catalog recomputed: %d products (cenik=%d popisky=%d excel=%d) in %.2fs",
            len(products), len(cenik), len(popisky), len(excel),
            time.monotonic() - started,
        )
        return len(products)

    # name used by the HTTP layer and the worker
    merge_product_data = recompute
