"""
Source Record Store — per-source staging area.

Holds the most recent raw import of every source under ``source_<tag>``.
An ingest fully replaces the stored list (no appending) and records the
import in the history. It never merges: rebuilding the catalog is a separate
operation composed by ProductImportService.
"""
import logging
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Union

from pydantic import ValidationError

from app.core.exceptions import ImportValidationError
from app.core.kv_store import KeyValueStore
from app.schemas.product import ProductRecord, SourceTag
from app.services.catalog_keys import source_key
from app.services.import_history_service import ImportHistoryTracker

logger = logging.getLogger(__name__)


def parse_source_tag(source: Union[str, SourceTag]) -> SourceTag:
    """Recognized source tag or ImportValidationError."""
    try:
        return SourceTag(source)
    except ValueError:
        allowed = ", ".join(tag.value for tag in SourceTag)
        raise ImportValidationError(f"Unknown product source '{source}' (expected one of: {allowed})")


def coerce_records(products: Any) -> List[ProductRecord]:
    """Validate the shape of an incoming product list."""
    if isinstance(products, (str, bytes)) or not isinstance(products, Iterable) or isinstance(products, Mapping):
        raise ImportValidationError(
            f"Products must be a list of records, got {type(products).__name__}"
        )

    records: List[ProductRecord] = []
    for idx, item in enumerate(products):
        if isinstance(item, ProductRecord):
            records.append(item)
            continue
        if not isinstance(item, Mapping):
            raise ImportValidationError(
                f"Product #{idx + 1} is not an object ({type(item).__name__})"
            )
        try:
            records.append(ProductRecord.model_validate(dict(item)))
        except ValidationError as e:
            raise ImportValidationError(f"Product #{idx + 1} is invalid: {e}") from e
    return records


class SourceRecordStore:
    """Writes raw source lists and their import history."""

    def __init__(self, store: KeyValueStore, history: ImportHistoryTracker):
        self.store = store
        self.history = history

    async def ingest(
        self,
        source: Union[str, SourceTag],
        products: Any,
        filename: Optional[str] = None,
    ) -> int:
        """
        Replace the stored list of ``source`` with ``products``.

        The raw list is written before the history entry, so the history
        never mentions an import whose data is missing. Either write failing
        fails the ingest (StorageError); the two keys are not transactional.

        Returns:
            Number of products stored (the input length).
        """
        tag = parse_source_tag(source)
        records = coerce_records(products)

        without_kod = sum(1 for r in records if not r.kod)
        if without_kod:
            logger.warning(
                "Source %s: %d of %d records have no kod and will be skipped by the merge",
                tag.value, without_kod, len(records),
            )

        await self.store.put_json(source_key(tag.value), [r.to_store() for r in records])
        await self.history.record_import(tag.value, len(records), filename)

        logger.info("Stored %d products from source %s", len(records), tag.value)
        return len(records)

    async def read_raw(self, source: Union[str, SourceTag]) -> Optional[str]:
        """Stored JSON text of a source, None if it was never imported."""
        tag = parse_source_tag(source)
        return await self.store.get(source_key(tag.value))
