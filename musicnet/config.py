"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ─────────────────────────────────────────────────────────
    postgres_host: str = "postgres"
    postgres_port: int = 5432
    postgres_user: str = "dev"
    postgres_password: str = "devpassword"
    postgres_database: str = "musicapp"
    # Full SQLAlchemy URL; wins over the postgres_* parts when set.
    # Tests point this at sqlite+aiosqlite.
    database_url: str = ""

    db_pool_size: int = 20
    db_max_overflow: int = 10

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"
        )

    # ── Request deadlines ──────────────────────────────────────────────────
    request_timeout_seconds: float = 5.0

    # ── Proximity search ───────────────────────────────────────────────────
    nearby_max_radius_km: float = 500.0
    nearby_max_limit: int = 100
    nearby_default_radius_km: float = 50.0
    nearby_default_limit: int = 20

    # ── Pagination (feeds, follower lists) ────────────────────────────────
    page_max_size: int = 100
    page_default_size: int = 20

    # ── MinIO (S3-compatible) ──────────────────────────────────────────────
    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "media"
    minio_use_ssl: bool = False
    # Public base for object URLs (CDN in production); falls back to the
    # MinIO endpoint + bucket.
    media_public_base_url: str = ""
    max_image_bytes: int = 5 * 1024 * 1024
    max_audio_bytes: int = 100 * 1024 * 1024

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "musicnet-api"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
