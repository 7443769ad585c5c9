"""
Import History Tracker.

Keeps the ``product_sources`` metadata object:
    {
        "last_updated": "...",
        "last_import_<tag>": "...",
        "import_history": [ {type, timestamp, products_count, filename}, ... ]
    }

History is newest-first and capped (20 by default); the oldest entries fall
off on overflow. Writing happens only as part of an ingest.
"""
import logging
from typing import Any, Callable, Dict, Optional

from app.core.kv_store import KeyValueStore
from app.core.timeutils import utc_now_iso
from app.services.catalog_keys import PRODUCT_SOURCES_KEY

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class ImportHistoryTracker:
    """Reads and updates the import metadata object."""

    def __init__(
        self,
        store: KeyValueStore,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.store = store
        self.history_limit = history_limit
        self.clock = clock

    async def get_product_import_history(self) -> Dict[str, Any]:
        """Metadata object, ``{"import_history": []}`` before the first import."""
        meta = await self.store.get_json(PRODUCT_SOURCES_KEY)
        if not meta:
            return {"import_history": []}
        meta.setdefault("import_history", [])
        return meta

    async def record_import(
        self,
        source: str,
        products_count: int,
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Prepend a history entry, stamp last_updated / last_import_<source>, persist."""
        meta = await self.store.get_json(PRODUCT_SOURCES_KEY) or {}
        now = self.clock()

        meta["last_updated"] = now
        meta[f"last_import_{source}"] = now

        history = list(meta.get("import_history") or [])
        history.insert(0, {
            "type": source,
            "timestamp": now,
            "products_count": products_count,
            "filename": filename,
        })
        meta["import_history"] = history[: self.history_limit]

        await self.store.put_json(PRODUCT_SOURCES_KEY, meta)
        logger.info(
            "Import recorded: source=%s count=%d filename=%s (history=%d)",
            source, products_count, filename, len(meta["import_history"]),
        )
        return meta
