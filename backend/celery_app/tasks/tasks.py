"""Celery tasks for deferred catalog work, with Redis de-duplication."""

import logging

from celery.signals import task_prerun

from celery_app.celery import celery_app

logger = logging.getLogger(__name__)


# ===================
# DEDUPLICATION HELPER
# ===================
# Before dispatching a task we set a Redis key with NX (only if not exists).
# If the key already exists, the task is still waiting in the queue, skip it.
# The key is released when the task starts, so work that arrives while it
# runs queues a follow-up instead of being folded into a run that has
# already read its inputs.

def _dedup_dispatch(task_ref, redis_client, scope: str, ttl: int = 300, queue: str = "default", **kwargs):
    """
    Dispatch a task with Redis-based deduplication.

    Args:
        task_ref: Celery task reference
        redis_client: sync Redis client instance
        scope: dedup scope (one pending task per scope)
        ttl: lock TTL in seconds, the key also expires if the worker dies
        queue: target queue name
        **kwargs: task keyword arguments

    Returns:
        True if dispatched, False if deduplicated (skipped)
    """
    task_name = task_ref.name.rsplit(".", 1)[-1]
    dedup_key = f"dedup:{queue}:{task_name}:{scope}"

    if not redis_client.set(dedup_key, "1", nx=True, ex=ttl):
        return False

    task_ref.apply_async(
        kwargs=kwargs,
        queue=queue,
        headers={"dedup_key": dedup_key},
    )
    return True


def _dedup_key_of(task):
    """The dedup header a task was dispatched with, if any."""
    request = getattr(task, "request", None)
    if request is None:
        return None
    dedup_key = getattr(request, "dedup_key", None)
    if not dedup_key:
        dedup_key = (getattr(request, "headers", None) or {}).get("dedup_key")
    return dedup_key


def _release_dedup_key(dedup_key: str, redis_client=None) -> None:
    import redis

    from app.config import get_settings

    try:
        client = redis_client or redis.from_url(get_settings().redis_url)
        client.delete(dedup_key)
    except redis.RedisError as e:
        # the key still expires after its TTL
        logger.warning("Could not clear dedup key %s: %s", dedup_key, e)


@task_prerun.connect
def _release_dedup_key_on_start(sender=None, task=None, **kwargs):
    """Free the dedup scope as soon as the task starts running."""
    dedup_key = _dedup_key_of(task or sender)
    if dedup_key:
        _release_dedup_key(dedup_key)


def schedule_catalog_recompute(redis_client=None) -> bool:
    """
    Queue one catalog recompute; a burst of imports collapses into one task.

    Returns:
        True if a task was queued, False if one is already pending.
    """
    import redis

    from app.config import get_settings

    settings = get_settings()
    client = redis_client or redis.from_url(settings.redis_url)
    dispatched = _dedup_dispatch(
        recompute_product_catalog,
        client,
        scope="product_catalog",
        ttl=settings.recompute_dedup_ttl,
        queue="catalog",
    )
    logger.info("Catalog recompute %s", "queued" if dispatched else "already pending")
    return dispatched


def _open_store(settings):
    """
    Store for one task run.

    asyncio.run() opens a fresh event loop per task, so the async Redis
    client cannot be shared with other runs.
    """
    from app.core.kv_store import InMemoryKeyValueStore, RedisKeyValueStore

    if settings.kv_backend == "memory":
        return InMemoryKeyValueStore()
    return RedisKeyValueStore(settings.redis_url, namespace=settings.kv_namespace)


# ===================
# TASK BODIES
# ===================
# Plain coroutines so they can be awaited without a broker.

async def run_catalog_recompute(store, settings) -> int:
    from app.services.catalog_context import build_catalog_context

    context = build_catalog_context(store, settings=settings, policy="manual")
    return await context.merge.recompute()


async def run_feed_import(store, settings, import_id: str, source: str, payload: str, filename: str = None) -> dict:
    """Parse + store one feed, keeping ``import_status:<import_id>`` current."""
    from app.core.exceptions import CatalogError
    from app.parsers.feed_registry import parse_xml_feed
    from app.services.catalog_context import build_catalog_context
    from app.services.import_status_service import STATUS_CANCELLED

    policy = "manual" if settings.recompute_policy == "manual" else "always"
    context = build_catalog_context(store, settings=settings, policy=policy)
    statuses = context.statuses

    current = await statuses.get(import_id)
    if current is None:
        await statuses.start(import_id, source)
    elif current.get("status") == STATUS_CANCELLED:
        logger.info("Import %s was cancelled before it started, skipping", import_id)
        return {"status": "cancelled", "count": 0}
    try:
        products = parse_xml_feed(source, payload)
        if not products:
            await statuses.complete(import_id, 0)
            return {"status": "completed", "count": 0, "warning": "No valid products in feed"}
        count = await context.imports.store_products_from_source(products, source, filename=filename)
    except CatalogError as e:
        await statuses.fail(import_id, e.message)
        return {"status": "failed", "error": e.message}
    except Exception as e:
        await statuses.fail(import_id, str(e))
        raise
    await statuses.complete(import_id, count)
    return {"status": "completed", "count": count}


async def run_import_status_cleanup(store, settings) -> dict:
    from app.services.import_status_service import ImportStatusTracker

    return await ImportStatusTracker(store).cleanup_old_imports(
        max_age_hours=settings.import_status_max_age_hours,
    )


# ===================
# CATALOG QUEUE
# ===================

@celery_app.task(bind=True)
def recompute_product_catalog(self):
    """
    Rebuild catalog, per-product records and indexes from the stored sources.

    Queue: CATALOG. Idempotent, safe to re-run after a failure.
    """
    import asyncio
    import time

    from app.config import get_settings

    settings = get_settings()

    async def _run():
        store = _open_store(settings)
        try:
            return await run_catalog_recompute(store, settings)
        finally:
            await store.close()

    started = time.monotonic()
    self.update_state(state="PROGRESS", meta={"status": "Merging product sources..."})
    count = asyncio.run(_run())
    logger.info("recompute_product_catalog: %d products in %.1fs", count, time.monotonic() - started)
    return {"status": "completed", "count": count}


# ===================
# IMPORTS QUEUE
# ===================

@celery_app.task(bind=True)
def import_product_feed(self, import_id: str, source: str, payload: str, filename: str = None):
    """
    Parse an XML feed and store it as ``source``.

    Queue: IMPORTS. The catalog is rebuilt inline unless the recompute
    policy is manual.
    """
    import asyncio

    from app.config import get_settings

    settings = get_settings()

    async def _run():
        store = _open_store(settings)
        try:
            return await run_feed_import(store, settings, import_id, source, payload, filename)
        finally:
            await store.close()

    self.update_state(state="PROGRESS", meta={"status": f"Importing {source} feed..."})
    result = asyncio.run(_run())
    logger.info("import_product_feed %s (%s): %s", import_id, source, result)
    return result


# ===================
# DEFAULT QUEUE
# ===================

@celery_app.task
def cleanup_import_statuses():
    """
    Remove finished import statuses older than the configured age.

    Queue: DEFAULT. Scheduled hourly by beat.
    """
    import asyncio

    from app.config import get_settings

    settings = get_settings()

    async def _run():
        store = _open_store(settings)
        try:
            return await run_import_status_cleanup(store, settings)
        finally:
            await store.close()

    result = asyncio.run(_run())
    logger.info("cleanup_import_statuses: removed %d", result["removed"])
    return result
