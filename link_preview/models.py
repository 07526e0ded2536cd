"""Pydantic models shared across the preview pipeline."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .urls import hostname_of

ERROR_DESCRIPTION = "Preview unavailable"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(url: str, title: Optional[str], description: Optional[str]) -> str:
    """sha256 over a canonical JSON encoding of (url, title, description)."""
    payload = json.dumps(
        {"url": url, "title": title, "description": description},
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PreviewSource(str, Enum):
    FRESH = "fresh"
    CACHE = "cache"


class PreviewRecord(_CamelModel):
    """A display-ready preview of a single URL.

    Success and failure share this shape; failures carry ``error`` and a
    quality score of 0.
    """

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    site_name: Optional[str] = None
    content_type: str = "website"

    is_first_party_official: bool = False
    official_service_name: Optional[str] = None
    service_enhancements: Optional[Dict[str, str]] = None

    quality_score: int = Field(default=0, ge=0, le=100)
    content_hash: str = ""

    source: PreviewSource = PreviewSource.FRESH
    from_cache: bool = False
    generated_at: datetime = Field(default_factory=utc_now)
    response_time_ms: Optional[int] = None
    is_dynamic: bool = False

    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, url: str, message: str) -> "PreviewRecord":
        """Build the error-shaped record for *url*."""
        url = "" if url is None else str(url)
        title = hostname_of(url) or url
        return cls(
            url=url,
            title=title,
            description=ERROR_DESCRIPTION,
            quality_score=0,
            content_hash=content_hash(url, title, ERROR_DESCRIPTION),
            error=message,
        )


class FetchErrorKind(str, Enum):
    INVALID_URL = "invalid_url"
    TIMEOUT = "timeout"
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    TOO_LARGE = "too_large"
    PARSE = "parse"


@dataclass(frozen=True)
class FetchError:
    """Typed extractor failure; returned, never raised."""

    url: str
    kind: FetchErrorKind
    message: str
    status_code: Optional[int] = None

    def to_record(self) -> PreviewRecord:
        return PreviewRecord.failure(self.url, self.message)


class CacheEntry(_CamelModel):
    """Persisted wrapper around an optimized preview payload."""

    key: str
    payload: Dict[str, Any]
    created_at: datetime
    last_accessed_at: datetime
    access_count: int = Field(default=0, ge=0)
    expires_at: int

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < int(now.timestamp())


class CacheStatistics(_CamelModel):
    total_entries: int
    generated_at: datetime
    config: Dict[str, Any] = Field(default_factory=dict)


class BatchResult(_CamelModel):
    total: int
    valid: int
    invalid: int
    previews: List[PreviewRecord] = Field(default_factory=list)
    response_time_ms: Optional[int] = None
