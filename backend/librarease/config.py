"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Librarease"
    app_env: str = "development"  # development | production
    debug: bool = False
    log_level: str = "info"
    cors_allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Database ─────────────────────────────────────────────────
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "librarease"
    db_password: str = "librarease"
    db_database: str = "librarease"
    db_pool_size: int = 10

    # ── Redis / task broker ──────────────────────────────────────
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    # ── Object storage (S3 / MinIO) ──────────────────────────────
    storage_endpoint_url: Optional[str] = None
    storage_region: str = "us-east-1"
    storage_access_key: Optional[str] = None
    storage_secret_key: Optional[str] = None
    storage_bucket: str = "librarease"
    storage_temp_path: str = "temp"
    storage_public_path: str = "public"
    presign_expire_minutes: int = 15

    # ── Identity provider ────────────────────────────────────────
    identity_base_url: str = "https://identitytoolkit.googleapis.com/v1"
    identity_api_key: Optional[str] = None
    identity_credentials_file: Optional[str] = None

    # ── Push notifications ───────────────────────────────────────
    fcm_server_key: Optional[str] = None

    # ── Worker ───────────────────────────────────────────────────
    worker_concurrency: int = 10
    worker_max_retry: int = 3
    overdue_check_interval_seconds: int = 3600

    # ── Server ───────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_database}"
        )

    @property
    def listen_dsn(self) -> str:
        """Plain DSN for the dedicated LISTEN connection (asyncpg, no SQLAlchemy)."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_database}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def has_push(self) -> bool:
        return bool(self.fcm_server_key)

    @property
    def has_storage_credentials(self) -> bool:
        return bool(self.storage_access_key and self.storage_secret_key)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
