"""Application configuration."""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "OMS API"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # CORS (React front end)
    cors_origins: List[str] = ["https://offer-management-system.pages.dev"]
    cors_allow_credentials: bool = True

    # Key-value store
    kv_backend: Literal["redis", "memory"] = "redis"
    kv_namespace: str = ""  # optional prefix, e.g. "oms:"

    # Redis
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Get Redis connection URL."""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Celery
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    def get_celery_broker_url(self) -> str:
        """Get Celery broker URL."""
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        """Get Celery result backend URL."""
        return self.celery_result_backend or self.redis_url

    # Catalog pipeline
    import_history_limit: int = 20
    merge_write_batch_size: int = 50
    catalog_default_page_size: int = 50
    catalog_max_page_size: int = 500

    # always:   ingest, then rebuild the catalog inline
    # deferred: ingest, then queue one de-duplicated Celery recompute
    # manual:   ingest only, POST /products/merge rebuilds
    recompute_policy: Literal["always", "deferred", "manual"] = "always"
    recompute_dedup_ttl: int = 300

    # finished import statuses older than this are removed hourly
    import_status_max_age_hours: int = 48

    # Intelek vendor feed
    intelek_feed_url: str = "https://www.intelek.cz/export_cena.jsp"
    intelek_feed_level: str = "54003830"
    intelek_feed_token: str = ""
    intelek_default_category: str = "Konektory a síťové prvky"
    intelek_default_manufacturer: str = "Intelek"
    feed_http_timeout: float = 60.0

    # Uploads
    excel_max_upload_mb: int = 10


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
