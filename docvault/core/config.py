"""Application configuration via Pydantic Settings."""
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StorageStrategy(str, Enum):
    """Which backend is tried first when issuing upload targets."""

    LOCAL = "local"
    REMOTE = "remote"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "DocVault"
    app_version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    public_base_url: str = "http://localhost:8000"  # used to build local upload URLs

    # Storage
    storage_backend: StorageStrategy = StorageStrategy.REMOTE
    storage_path: Path = Field(default=Path("./data"))
    ledger_filename: str = "metadata.json"
    max_upload_size_mb: int = 50
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "text/plain",
        ]
    )
    upload_target_ttl_seconds: int = 3600

    # Object storage (S3-compatible)
    s3_bucket_name: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    s3_key_prefix: str = "uploads"
    s3_default_owner: str = "system"
    s3_default_visibility: Literal["public", "private"] = "public"
    presign_expiry_seconds: int = 900
    provider_timeout_seconds: float = 10.0
    provider_max_retries: int = 2

    @field_validator("storage_path", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Convert string to Path and ensure it exists."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("s3_key_prefix")
    @classmethod
    def strip_prefix_slashes(cls, v: str) -> str:
        return v.strip("/")

    @property
    def max_upload_bytes(self) -> int:
        """Upload size ceiling in bytes."""
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def uploads_dir(self) -> Path:
        """Directory holding locally stored documents."""
        return self.storage_path / "uploads"

    @property
    def ledger_path(self) -> Path:
        """Location of the metadata journal."""
        return self.storage_path / self.ledger_filename

    @property
    def remote_configured(self) -> bool:
        """Check if an object-storage bucket is configured."""
        return bool(self.s3_bucket_name)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
