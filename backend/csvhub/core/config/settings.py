"""
Application settings loaded from environment variables and ``.env``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """csvhub configuration."""

    # === Application ===
    app_name: str = "csvhub"
    environment: str = "development"
    debug: bool = False
    api_prefix: str = "/api"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # === Paths ===
    data_dir: Path = Path("./data")
    upload_dir: Path = Path("./uploads")
    database_path: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("CSVHUB_DATABASE_PATH", "DATABASE_PATH"),
        description="SQLite file for the record store (defaults to <data_dir>/db.sqlite)",
    )
    streamed_store_dir: Optional[Path] = Field(
        default=None,
        description="Directory for record logs and JSON indexes (defaults to <data_dir>)",
    )

    # === Storage selection ===
    size_threshold_mb: float = 50.0

    # === Ingestion ===
    record_batch_size: int = 5_000
    streamed_batch_size: int = 50_000
    csv_chunk_size: int = 1024 * 1024
    csv_encoding: str = "utf-8-sig"
    max_record_bytes: int = 16 * 1024 * 1024
    max_upload_size: int = 12 * 1024 * 1024 * 1024
    upload_chunk_size: int = 1024 * 1024

    # === Streamed file store ===
    flush_threshold_rows: int = 10_000
    flush_delay_seconds: float = 3.0
    max_cached_rows: int = 1_000_000
    cache_warm_rows: int = 100
    load_wait_seconds: float = 0.25
    log_read_chunk_size: int = 64 * 1024

    # === Row access ===
    default_page_size: int = 100
    max_page_size: int = 10_000
    filter_scan_batch_size: int = 5_000

    # === Security ===
    secret_key: str = "dev-secret-key-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    model_config = SettingsConfigDict(
        env_prefix="CSVHUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "size_threshold_mb",
        "record_batch_size",
        "streamed_batch_size",
        "csv_chunk_size",
        "flush_threshold_rows",
        "max_cached_rows",
        "max_page_size",
        "filter_scan_batch_size",
    )
    @classmethod
    def _must_be_positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("flush_delay_seconds", "load_wait_seconds")
    @classmethod
    def _must_not_be_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def resolved_database_path(self) -> Path:
        """Absolute path of the record store database file."""
        path = self.database_path or (self.data_dir / "db.sqlite")
        return path.expanduser().resolve()

    @property
    def resolved_streamed_store_dir(self) -> Path:
        """Absolute directory of the streamed file store."""
        return (self.streamed_store_dir or self.data_dir).expanduser().resolve()

    @property
    def resolved_upload_dir(self) -> Path:
        """Absolute directory for uploaded source files."""
        return self.upload_dir.expanduser().resolve()

    @property
    def database_url(self) -> str:
        """SQLAlchemy async URL for the record store."""
        return f"sqlite+aiosqlite:///{self.resolved_database_path}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
