"""Link Preview: URL metadata extraction with a domain-aware preview cache."""

__version__ = "0.1.0"

from .cache import PreviewCache
from .config import Settings, get_settings
from .exceptions import BatchLimitExceeded, CacheUnavailable, PreviewError
from .extract import MetadataExtractor
from .models import (
    BatchResult,
    CacheEntry,
    FetchError,
    FetchErrorKind,
    PreviewRecord,
    PreviewSource,
    content_hash,
)
from .orchestrator import PreviewOrchestrator, build_orchestrator
from .store import InMemoryStore, JsonFileStore

__all__ = [
    "Settings",
    "get_settings",
    "MetadataExtractor",
    "PreviewCache",
    "PreviewOrchestrator",
    "InMemoryStore",
    "JsonFileStore",
    "PreviewRecord",
    "PreviewSource",
    "CacheEntry",
    "BatchResult",
    "FetchError",
    "FetchErrorKind",
    "content_hash",
    "PreviewError",
    "BatchLimitExceeded",
    "CacheUnavailable",
    "build_orchestrator",
]
