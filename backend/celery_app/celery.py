"""Celery application configuration with separate queues."""

from celery import Celery
from kombu import Exchange, Queue

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "oms_worker",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=["celery_app.tasks.tasks"],
)

# ===================
# Queue Configuration
# ===================
# - catalog: catalog recomputes (short, de-duplicated)
# - imports: feed parsing + ingest (large XML documents)

default_exchange = Exchange("oms", type="direct")

celery_app.conf.task_queues = (
    Queue("catalog", default_exchange, routing_key="catalog"),
    Queue("imports", default_exchange, routing_key="imports"),
    Queue("default", default_exchange, routing_key="default"),
)

celery_app.conf.task_default_queue = "default"
celery_app.conf.task_default_exchange = "oms"
celery_app.conf.task_default_routing_key = "default"

celery_app.conf.task_routes = {
    "celery_app.tasks.tasks.recompute_product_catalog": {"queue": "catalog", "routing_key": "catalog"},
    "celery_app.tasks.tasks.import_product_feed": {"queue": "imports", "routing_key": "imports"},
}

# ===================
# Beat Schedule
# ===================
celery_app.conf.beat_schedule = {
    "cleanup-import-statuses": {
        "task": "celery_app.tasks.tasks.cleanup_import_statuses",
        "schedule": 3600.0,
        "options": {"queue": "default"},
    },
}

# ===================
# Celery Configuration
# ===================
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,

    task_time_limit=1800,
    task_soft_time_limit=1740,

    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours

    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


# ===================
# Worker startup hints
# ===================
#   celery -A celery_app.celery worker -Q catalog -c 1 --loglevel=info -n catalog@%h
#   celery -A celery_app.celery worker -Q imports,default -c 2 --loglevel=info -n imports@%h
#   celery -A celery_app.celery beat --loglevel=info
#
# One recompute at a time on the catalog queue keeps successive rebuilds
# from interleaving their writes.
