"""
Import Status Tracker — progress of deferred feed imports.

Each import id maps to ``import_status:<id>`` in the key-value store:
    {id, type, status, started_at, finished_at, products_count, errors}

status: processing → completed | failed | cancelled

``import_status_index`` lists the known ids so statuses can be listed and
expired without scanning the key space. Finished statuses older than
``max_age_hours`` are removed by cleanup_old_imports (run periodically by
the worker).
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from app.core.exceptions import ImportNotFoundError
from app.core.kv_store import KeyValueStore
from app.core.timeutils import utc_now_iso
from app.services.catalog_keys import IMPORT_STATUS_INDEX_KEY, import_status_key

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

FINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ImportStatusTracker:
    """Store-backed status table, passed explicitly to the import worker."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], str] = utc_now_iso):
        self.store = store
        self.clock = clock

    @staticmethod
    def new_import_id() -> str:
        return uuid.uuid4().hex

    # ── index ───────────────────────────────────────────────

    async def _known_ids(self) -> List[str]:
        return list(await self.store.get_json(IMPORT_STATUS_INDEX_KEY, default=[]) or [])

    async def _remember(self, import_id: str) -> None:
        ids = await self._known_ids()
        if import_id not in ids:
            ids.append(import_id)
            await self.store.put_json(IMPORT_STATUS_INDEX_KEY, ids)

    # ── transitions ─────────────────────────────────────────

    async def start(self, import_id: str, import_type: str) -> Dict[str, Any]:
        status = {
            "id": import_id,
            "type": import_type,
            "status": STATUS_PROCESSING,
            "started_at": self.clock(),
            "finished_at": None,
            "products_count": 0,
            "errors": [],
        }
        await self.store.put_json(import_status_key(import_id), status)
        await self._remember(import_id)
        return status

    async def _finish(self, import_id: str, **changes: Any) -> Dict[str, Any]:
        status = await self.get(import_id)
        if status is None:
            status = {
                "id": import_id,
                "type": "unknown",
                "started_at": self.clock(),
                "products_count": 0,
                "errors": [],
            }
            await self._remember(import_id)
        status.update(changes)
        status["finished_at"] = self.clock()
        await self.store.put_json(import_status_key(import_id), status)
        return status

    async def complete(self, import_id: str, products_count: int) -> Dict[str, Any]:
        logger.info("Import %s completed: %d products", import_id, products_count)
        return await self._finish(import_id, status=STATUS_COMPLETED, products_count=products_count)

    async def fail(self, import_id: str, error: str) -> Dict[str, Any]:
        logger.error("Import %s failed: %s", import_id, error)
        current = await self.get(import_id) or {}
        errors = list(current.get("errors") or []) + [error]
        return await self._finish(import_id, status=STATUS_FAILED, errors=errors)

    async def cancel(self, import_id: str) -> Dict[str, Any]:
        """
        Mark a running import as cancelled.

        The worker checks the status before it parses the feed, so an import
        cancelled while still queued never touches the catalog. An import
        that already finished keeps its status.

        Raises:
            ImportNotFoundError: no status is stored under ``import_id``.
        """
        current = await self.get(import_id)
        if current is None:
            raise ImportNotFoundError(import_id)

        if current.get("status") in FINAL_STATUSES:
            return {
                "message": f"Import is already {current['status']} and cannot be cancelled",
                "import_id": import_id,
                "status": current["status"],
            }

        await self._finish(import_id, status=STATUS_CANCELLED)
        logger.info("Import %s cancelled", import_id)
        return {"message": "Import cancelled", "import_id": import_id, "status": STATUS_CANCELLED}

    # ── reads ───────────────────────────────────────────────

    async def get(self, import_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get_json(import_status_key(import_id))

    async def list_imports(self) -> List[Dict[str, Any]]:
        """Every stored status, newest first."""
        ids = await self._known_ids()
        statuses = await asyncio.gather(*(self.get(import_id) for import_id in ids))
        found = [s for s in statuses if s]
        found.sort(key=lambda s: s.get("started_at") or "", reverse=True)
        return found

    async def list_active(self) -> List[Dict[str, Any]]:
        """Imports still processing, newest first."""
        return [s for s in await self.list_imports() if s.get("status") == STATUS_PROCESSING]

    # ── expiry ──────────────────────────────────────────────

    async def cleanup_old_imports(self, max_age_hours: int = 48, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Delete finished statuses older than ``max_age_hours``.

        Age is measured from finished_at, or started_at when the import never
        recorded an end. Processing imports are kept regardless of age.

        Returns:
            {"removed": <number of deleted statuses>}
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=max_age_hours)
        ids = await self._known_ids()
        kept: List[str] = []
        removed = 0

        for import_id in ids:
            status = await self.get(import_id)
            if status is None:
                continue
            stamp = _parse_timestamp(status.get("finished_at")) or _parse_timestamp(status.get("started_at"))
            if status.get("status") in FINAL_STATUSES and stamp is not None and stamp < cutoff:
                await self.store.delete(import_status_key(import_id))
                removed += 1
            else:
                kept.append(import_id)

        if kept != ids:
            await self.store.put_json(IMPORT_STATUS_INDEX_KEY, kept)
        if removed:
            logger.info("Removed %d import statuses older than %dh", removed, max_age_hours)
        return {"removed": removed}
