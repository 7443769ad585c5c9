"""
Product Import Service — ingest + recompute under a policy.

    ALWAYS   — ingest, then recompute inline (the import returns once the
               catalog reflects it)
    DEFERRED — ingest, then hand off to a scheduler (Celery task with Redis
               NX de-duplication by default)
    MANUAL   — ingest only; POST /products/merge rebuilds

Every policy returns the number of ingested products.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

from app.schemas.product import SourceTag
from app.services.product_merge_service import ProductMergeService
from app.services.source_store import SourceRecordStore

logger = logging.getLogger(__name__)


class RecomputePolicy(str, Enum):
    ALWAYS = "always"
    DEFERRED = "deferred"
    MANUAL = "manual"


class ProductImportService:
    """Composes SourceRecordStore.ingest with ProductMergeService.recompute."""

    def __init__(
        self,
        sources: SourceRecordStore,
        merge: ProductMergeService,
        policy: Union[RecomputePolicy, str] = RecomputePolicy.ALWAYS,
        scheduler: Optional[Callable[[], Any]] = None,
    ):
        self.sources = sources
        self.merge = merge
        self.policy = RecomputePolicy(policy)
        if self.policy == RecomputePolicy.DEFERRED and scheduler is None:
            raise ValueError("Deferred recompute policy needs a scheduler")
        self.scheduler = scheduler

    async def _schedule_recompute(self) -> None:
        """Run the scheduler off the event loop (it may block on Redis)."""
        result = await asyncio.to_thread(self.scheduler)
        if inspect.isawaitable(result):
            result = await result
        if result is False:
            logger.info("Catalog recompute already queued, skipping duplicate")
        else:
            logger.info("Catalog recompute queued")

    async def store_products_from_source(
        self,
        products: Any,
        source: Union[str, SourceTag],
        filename: Optional[str] = None,
    ) -> int:
        """
        Store a parsed feed and bring the catalog up to date per policy.

        Returns:
            Number of products stored.

        Raises:
            ImportValidationError: unknown source or malformed products.
            StorageError / MergeError / CatalogIndexError: see recompute().
        """
        count = await self.sources.ingest(source, products, filename=filename)

        if self.policy == RecomputePolicy.ALWAYS:
            await self.merge.recompute()
        elif self.policy == RecomputePolicy.DEFERRED:
            await self._schedule_recompute()
        else:
            logger.info("Recompute policy is manual, catalog not rebuilt after %s import", source)

        return count
