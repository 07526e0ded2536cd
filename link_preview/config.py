"""Configuration for the link preview service using pydantic-settings.

All settings are driven by environment variables with the LINK_PREVIEW_
prefix. Mapping and list fields accept JSON, e.g.
``LINK_PREVIEW_CACHE_TTL_BY_DOMAIN='{"github.com": 48}'``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LINK_PREVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    project_root: Path = Path(".")
    cache_dir: Path = Path("cache")
    cache_file: str = "url_cache.json"

    user_agent: str = "Mozilla/5.0 (compatible; link-preview/0.1)"
    accept_language: str = "en-US,en;q=0.9"

    fetch_timeout_seconds: float = 10.0
    max_content_bytes: int = 5 * 1024 * 1024

    max_title_length: int = 200
    max_extracted_description_length: int = 500
    max_site_name_length: int = 100
    max_description_length: int = 300

    retry_attempts: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0.0)

    max_batch_size: int = 10
    batch_concurrency: int = Field(default=5, ge=1, le=10)

    cache_enabled: bool = True
    cache_default_ttl_hours: int = 24
    cache_min_ttl_hours: int = 1
    cache_max_ttl_hours: int = 168
    cache_ttl_by_domain: Dict[str, int] = Field(
        default_factory=lambda: {
            "aws.amazon.com": 72,
            "github.com": 48,
            "stackoverflow.com": 12,
        }
    )

    first_party_domains: List[str] = Field(
        default_factory=lambda: [
            "aws.amazon.com",
            "docs.aws.amazon.com",
            "console.aws.amazon.com",
            "aws.amazon.co.jp",
        ]
    )
    service_icon_base_url: str = "https://aws-icons.s3.amazonaws.com"

    @property
    def cache_path(self) -> Path:
        """Location of the JSON file backing the file store."""
        return self.project_root / self.cache_dir / self.cache_file

    def ensure_dirs(self) -> None:
        """Create the cache directory if it doesn't exist."""
        path = self.project_root / self.cache_dir
        path.mkdir(parents=True, exist_ok=True)
        logger.debug("Ensured directory: %s", path)


def get_settings() -> Settings:
    """Load settings from environment and ensure the cache directory exists."""
    s = Settings()
    s.ensure_dirs()
    return s
