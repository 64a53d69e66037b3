"""Application configuration for the proxy service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised when the process cannot start with the configuration it was given."""


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ProxySettings(BaseSettings):
    """Runtime settings for the object proxy."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    bucket: str = env_field(..., "S3PROXY_BUCKET")
    region: str = env_field("eu-central-1", "S3PROXY_REGION")
    host: str = env_field("0.0.0.0", "S3PROXY_HOST")
    port: int = env_field(3000, "S3PROXY_PORT")
    cache_dir: Optional[Path] = env_field(None, "S3PROXY_CACHE_DIR")
    s3_endpoint_url: Optional[str] = env_field(None, "S3PROXY_S3_ENDPOINT")
    chunk_size: int = env_field(64 * 1024, "S3PROXY_CHUNK_SIZE")
    admin_prefix: Optional[str] = env_field(None, "S3PROXY_ADMIN_PREFIX")
    metrics_token: Optional[SecretStr] = env_field(None, "S3PROXY_METRICS_TOKEN")
    log_level: str = env_field("INFO", "S3PROXY_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "S3PROXY_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "S3PROXY_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "S3PROXY_OTEL_SAMPLER_RATIO")

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("bucket must not be empty")
        return value

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _normalize_cache_dir(cls, value):
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("admin_prefix", mode="before")
    @classmethod
    def _normalize_admin_prefix(cls, value):
        if value is None:
            return None
        value = str(value).strip().rstrip("/")
        if not value:
            return None
        if not value.startswith("/"):
            value = "/" + value
        return value

    @field_validator("chunk_size")
    @classmethod
    def _positive_chunk_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value


def load_settings(**overrides) -> ProxySettings:
    """Build settings from the environment, converting validation failures into a startup error."""

    try:
        return ProxySettings(**overrides)
    except ValidationError as exc:
        missing = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        raise ConfigurationError(f"Invalid proxy configuration: {', '.join(missing)}") from exc
