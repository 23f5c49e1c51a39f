from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # PostgreSQL (configs, tracking table, sync logs)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "catalog_sync"
    postgres_user: str = "catalog_sync"
    postgres_password: str = ""

    # Commerce platform Admin API
    shop_domain: str = "example.myshopify.com"
    shop_access_token: str = ""
    shop_api_version: str = "2024-10"
    http_timeout_seconds: float = 30.0

    # Concurrency caps per external dependency
    api_concurrency: int = 5
    ftp_concurrency: int = 2
    db_concurrency: int = 10

    # Reconciliation
    sku_lookup_batch_size: int = 25
    bulk_threshold: int = 10
    bulk_max_batch_size: int = 1000
    bulk_poll_interval_seconds: float = 5.0
    bulk_poll_max_attempts: int = 120
    cleanup_batch_size: int = 5
    cleanup_batch_pause_seconds: float = 0.1
    default_sync_limit: int = 100

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_check_minutes: int = 60
    default_sync_frequency_hours: int = 24

    # CORS
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost"]

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def graphql_endpoint(self) -> str:
        host = self.shop_domain.removeprefix("https://").removeprefix("http://").rstrip("/")
        return f"https://{host}/admin/api/{self.shop_api_version}/graphql.json"


settings = Settings()
