"""Request models sent to the Job Queue Service."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..url_tools import is_absolute_url


def _validate_start_url(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("URL is required")
    if not is_absolute_url(value):
        raise ValueError("Invalid URL format")
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EngineType(str, Enum):
    SPIDER = "spider"
    PUPPETEER = "puppeteer"


class DiveRequest(_WireModel):
    url: str = Field(..., description="Start URL of the dive")
    max_depth: int = Field(3, ge=1, le=10)
    max_pages: int = Field(50, ge=1, le=1000)
    follow_external_links: bool = False
    include_assets: bool = False
    respect_robots_txt: bool = True
    stay_within_base_url: bool = True
    delay: int = Field(1000, ge=0, description="Delay between requests in milliseconds")
    user_agent: Optional[str] = None
    exclude_patterns: Optional[List[str]] = None
    include_patterns: Optional[List[str]] = None
    engine_type: EngineType = EngineType.SPIDER

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_start_url(value)

    @field_validator("user_agent")
    @classmethod
    def _blank_user_agent(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("exclude_patterns", "include_patterns")
    @classmethod
    def _drop_blank_patterns(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        patterns = [pattern.strip() for pattern in value if pattern and pattern.strip()]
        return patterns or None


class PreviewRequest(_WireModel):
    url: str

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_start_url(value)


class ScrapeOptions(_WireModel):
    engine: str = "spider"
    timeout: int = Field(30000, ge=0, description="Per-page timeout in milliseconds")
    screenshot: bool = False
    full_page: bool = False
    wait_for: int = Field(1000, ge=0)
    user_agent: Optional[str] = "WebCrawler/1.0"


class MassScrapeRequest(_WireModel):
    urls: List[str] = Field(..., min_length=1)
    batch_name: str
    options: ScrapeOptions = Field(default_factory=ScrapeOptions)
    create_corpus: Optional[bool] = None
    corpus_name: Optional[str] = None
    corpus_description: Optional[str] = None
    corpus_tags: Optional[List[str]] = None


class BatchFromDiveRequest(_WireModel):
    dive_job_id: str = Field(..., min_length=1)
    selected_urls: List[str] = Field(..., min_length=1)
    batch_name: str
    options: ScrapeOptions = Field(default_factory=ScrapeOptions)
    create_corpus: Optional[bool] = None
    corpus_name: Optional[str] = None
    corpus_description: Optional[str] = None


class CorpusLinkRequest(_WireModel):
    corpus_name: Optional[str] = None
    corpus_description: Optional[str] = None
    corpus_tags: Optional[List[str]] = None


__all__ = [
    "EngineType",
    "DiveRequest",
    "PreviewRequest",
    "ScrapeOptions",
    "MassScrapeRequest",
    "BatchFromDiveRequest",
    "CorpusLinkRequest",
]
