"""
Wiring of the catalog services around one key-value store.

The context is built explicitly and handed to whoever needs it (HTTP
handlers through ``Depends(get_catalog_context)``, Celery tasks through
``build_catalog_context``); no service keeps process-wide state of its own.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.config import Settings, get_settings
from app.core.kv_store import KeyValueStore, get_kv_store
from app.services.catalog_query_service import CatalogQueryService
from app.services.import_history_service import ImportHistoryTracker
from app.services.import_status_service import ImportStatusTracker
from app.services.intelek_feed_service import IntelekFeedService
from app.services.offer_service import OfferService
from app.services.product_import_service import ProductImportService, RecomputePolicy
from app.services.product_index_service import ProductIndexService
from app.services.product_merge_service import ProductMergeService
from app.services.source_store import SourceRecordStore


@dataclass
class CatalogContext:
    store: KeyValueStore
    settings: Settings
    history: ImportHistoryTracker
    sources: SourceRecordStore
    indexes: ProductIndexService
    merge: ProductMergeService
    queries: CatalogQueryService
    imports: ProductImportService
    statuses: ImportStatusTracker
    offers: OfferService

    def intelek_feed(self, http_client: Any = None) -> IntelekFeedService:
        return IntelekFeedService(self.imports, settings=self.settings, http_client=http_client)


def _default_scheduler() -> Callable[[], bool]:
    from celery_app.tasks.tasks import schedule_catalog_recompute
    return schedule_catalog_recompute


def build_catalog_context(
    store: KeyValueStore,
    settings: Optional[Settings] = None,
    policy: Optional[str] = None,
    scheduler: Optional[Callable[[], Any]] = None,
) -> CatalogContext:
    """Assemble every catalog service on top of ``store``."""
    settings = settings or get_settings()
    policy = RecomputePolicy(policy or settings.recompute_policy)
    if policy == RecomputePolicy.DEFERRED and scheduler is None:
        scheduler = _default_scheduler()

    history = ImportHistoryTracker(store, history_limit=settings.import_history_limit)
    sources = SourceRecordStore(store, history)
    indexes = ProductIndexService(store)
    merge = ProductMergeService(store, indexes, batch_size=settings.merge_write_batch_size)

    return CatalogContext(
        store=store,
        settings=settings,
        history=history,
        sources=sources,
        indexes=indexes,
        merge=merge,
        queries=CatalogQueryService(store, default_page_size=settings.catalog_default_page_size),
        imports=ProductImportService(sources, merge, policy=policy, scheduler=scheduler),
        statuses=ImportStatusTracker(store),
        offers=OfferService(store),
    )


def get_catalog_context() -> CatalogContext:
    """FastAPI dependency: services bound to the configured store."""
    return build_catalog_context(get_kv_store())
