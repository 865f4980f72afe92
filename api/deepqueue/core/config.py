from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "deepqueue-api"
    environment: str = "dev"
    app_url: str = "http://localhost:8000"
    api_key_header: str = "X-API-Key"
    operator_api_key: str | None = None
    kv_backend: Literal["memory", "postgres"] = "memory"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    hookdeck_api_key: str | None = None
    hookdeck_api_url: str = "https://api.hookdeck.com/2025-07-01"
    hookdeck_signing_secret: str | None = None
    openai_api_key: str | None = None
    openai_api_url: str = "https://api.openai.com/v1"
    openai_model: str = "o3-deep-research"
    http_timeout_seconds: float = 10.0
    otel_enabled: bool = True
    otel_service_name: str = "deepqueue-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="DQ_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
