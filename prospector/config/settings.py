"""Prospector configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _env_bool(var_name: str, default: str = "") -> bool:
    return os.getenv(var_name, default).strip().lower() in {"1", "true", "yes", "on"}


def _optional_path(var_name: str) -> Path | None:
    raw = os.getenv(var_name, "").strip()
    return Path(raw) if raw else None


class VertexConfig(BaseModel):
    """Vertex AI configuration for the reasoning backend."""

    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    credentials_path: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    )
    model: str = Field(
        default_factory=lambda: os.getenv("PROSPECTOR_REASONING_MODEL", "gemini-2.5-flash")
    )
    strategy_temperature: float = 0.3
    queries_temperature: float = 0.4
    interpretation_temperature: float = 0.5
    max_output_tokens: int = 1024


class SearchConfig(BaseModel):
    """Search provider configuration."""

    api_key: str = Field(default_factory=lambda: os.getenv("GOOGLE_SEARCH_API_KEY", ""))
    engine_id: str = Field(default_factory=lambda: os.getenv("GOOGLE_SEARCH_ENGINE_ID", ""))
    endpoint: str = "https://www.googleapis.com/customsearch/v1"
    backend: Literal["api", "browser"] = Field(
        default_factory=lambda: os.getenv("PROSPECTOR_SEARCH_BACKEND", "api")  # type: ignore[arg-type]
    )
    max_calls_per_entity: int = Field(
        default_factory=lambda: int(os.getenv("PROSPECTOR_MAX_CALLS_PER_ENTITY", "10"))
    )
    max_results_per_query: int = 10
    max_queries_per_entity: int = 5
    history_limit: int = 100

    @property
    def api_configured(self) -> bool:
        return bool(self.api_key and self.engine_id)

    @field_validator("max_calls_per_entity")
    @classmethod
    def _validate_max_calls(cls, value: int) -> int:
        if value < 0:
            raise ValueError("PROSPECTOR_MAX_CALLS_PER_ENTITY must be >= 0")
        return value


class TimeoutConfig(BaseModel):
    """Timeout budgets for every suspension point."""

    page_load_timeout_s: int = 30
    dynamic_content_wait_s: float = 2.0
    http_timeout_s: float = 30.0
    dns_timeout_s: float = 5.0
    smtp_timeout_s: float = 10.0
    reasoning_timeout_s: float = 60.0


class BrowserConfig(BaseModel):
    """Browser layer configuration."""

    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str | None = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    locale: str = "en-US"
    respect_robots_txt: bool = True


class KnowledgeConfig(BaseModel):
    """Knowledge store configuration."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PROSPECTOR_DATA_DIR", "./data"))
    )
    staleness_days: int = 30
    min_email_confidence: int = 30

    @property
    def store_path(self) -> Path:
        return self.data_dir / "knowledge.json"


class RegistryConfig(BaseModel):
    """Official registry configuration."""

    label: str = "Arizona ROC"
    region: str = "Arizona"
    portal_url: str = Field(
        default_factory=lambda: os.getenv(
            "PROSPECTOR_REGISTRY_PORTAL_URL",
            "https://azroc.my.site.com/AZRoc/s/contractor-search",
        )
    )
    dataset_path: Path | None = Field(
        default_factory=lambda: _optional_path("PROSPECTOR_REGISTRY_DATASET")
    )
    portal_enabled: bool = Field(
        default_factory=lambda: not _env_bool("PROSPECTOR_DISABLE_REGISTRY_PORTAL")
    )
    fuzzy_match_threshold: float = 0.85

    @field_validator("portal_url")
    @classmethod
    def _validate_portal_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Invalid registry portal URL: {value}")
        return value


class ValidationConfig(BaseModel):
    """Email validation configuration."""

    smtp_probe: bool = Field(default_factory=lambda: _env_bool("PROSPECTOR_SMTP_PROBE"))
    helo_domain: str = Field(
        default_factory=lambda: os.getenv("PROSPECTOR_SMTP_HELO", "prospector.local")
    )
    probe_sender: str = Field(
        default_factory=lambda: os.getenv("PROSPECTOR_SMTP_SENDER", "verify@prospector.local")
    )


class CostConfig(BaseModel):
    """Unit costs (USD) per billable action."""

    search_unit_cost: float = 0.005
    browser_search_unit_cost: float = 0.01
    scrape_unit_cost: float = 0.0
    validation_unit_cost: float = 0.0
    reasoning_unit_cost: float = 0.001
    currency: str = "USD"


class WorkerConfig(BaseModel):
    """Entity worker pool sizing."""

    max_concurrent_entities: int = Field(
        default_factory=lambda: int(os.getenv("PROSPECTOR_MAX_CONCURRENT_ENTITIES", "4"))
    )
    progress_queue_size: int = 256

    @field_validator("max_concurrent_entities")
    @classmethod
    def _validate_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PROSPECTOR_MAX_CONCURRENT_ENTITIES must be >= 1")
        return value


class APIConfig(BaseModel):
    """Boundary API runtime controls from environment."""

    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("PROSPECTOR_ALLOWED_ORIGINS", "")
        )
    )
    job_retention_limit: int = Field(
        default_factory=lambda: int(os.getenv("PROSPECTOR_JOB_RETENTION_LIMIT", "200"))
    )

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("PROSPECTOR_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value

    @field_validator("job_retention_limit")
    @classmethod
    def _validate_retention_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("PROSPECTOR_JOB_RETENTION_LIMIT must be >= 1")
        return value


class ProspectorConfig(BaseModel):
    """Root configuration shared by every job."""

    vertex: VertexConfig = Field(default_factory=VertexConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    costs: CostConfig = Field(default_factory=CostConfig)
    workers: WorkerConfig = Field(default_factory=WorkerConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("PROSPECTOR_LOG_LEVEL", "INFO"))
