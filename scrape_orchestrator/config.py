"""Configuration management for the scrape orchestrator."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings using environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCRAPE_ORCHESTRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Job Queue Service
    service_url: str = Field("http://localhost:3001", description="Base URL of the Job Queue Service")
    request_timeout_seconds: float = Field(30.0, gt=0, description="HTTP request timeout")

    # Polling
    dive_poll_interval_seconds: float = Field(2.0, gt=0, description="Progress poll interval for dive jobs")
    batch_poll_interval_seconds: float = Field(3.0, gt=0, description="Refresh interval for the batch list")
    job_list_poll_interval_seconds: float = Field(3.0, gt=0, description="Refresh interval for the job list")
    poll_failure_threshold: Optional[int] = Field(
        None, ge=1, description="Consecutive poll failures before a tracked id is flagged as disconnected"
    )

    # Corpus linking
    batch_wait_interval_seconds: float = Field(2.0, gt=0, description="Poll interval while waiting for a batch")
    batch_wait_timeout_seconds: Optional[float] = Field(
        None, gt=0, description="Give up waiting for a batch after this many seconds"
    )
    link_ledger_path: Optional[Path] = Field(
        None, description="JSON file recording linked batch ids; in-memory when unset"
    )
    default_tags: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Tags applied to corpora created by the CLI"
    )

    # Logging
    log_level: str = Field("INFO", description="Python logging level")
    log_file: Optional[Path] = Field(None, description="Optional rotating log file")

    # Monitoring
    enable_metrics: bool = Field(False, description="Whether to expose Prometheus metrics")
    metrics_port: int = Field(9000, description="Port for Prometheus metrics server")

    @field_validator("service_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("default_tags", mode="before")
    @classmethod
    def _split_tags(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value or []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
