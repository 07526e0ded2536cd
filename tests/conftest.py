"""Shared test fixtures for link preview tests."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import pytest

from link_preview.cache import PreviewCache
from link_preview.config import Settings
from link_preview.exceptions import CacheUnavailable
from link_preview.models import FetchError, FetchErrorKind, PreviewRecord
from link_preview.orchestrator import PreviewOrchestrator
from link_preview.store import InMemoryStore

FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeExtractor:
    """Scripted extractor: each URL maps to a list of outcomes, consumed in order.

    The last outcome repeats once the list is exhausted.
    """

    def __init__(self, outcomes: Optional[Dict[str, List[Union[PreviewRecord, FetchError, Exception]]]] = None):
        self.outcomes = outcomes or {}
        self.calls: List[str] = []
        self.closed = False

    async def extract(self, url, *, force_refresh=False, timeout=None):
        self.calls.append(url)
        script = self.outcomes.get(url)
        if not script:
            return make_record(url)
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


class BrokenStore(InMemoryStore):
    """Store whose every operation fails, for outage paths."""

    async def get_item(self, key):
        raise CacheUnavailable("store down")

    async def put_item(self, key, item):
        raise CacheUnavailable("store down")

    async def count(self):
        raise CacheUnavailable("store down")


def make_record(url: str = "https://example.com/", **overrides) -> PreviewRecord:
    defaults = {
        "url": url,
        "title": "Example Domain Title",
        "description": "An example page used to exercise the preview pipeline in tests.",
        "image_url": "https://example.com/og.png",
        "site_name": "Example",
    }
    defaults.update(overrides)
    return PreviewRecord(**defaults)


def network_error(url: str) -> FetchError:
    return FetchError(url=url, kind=FetchErrorKind.NETWORK, message=f"Network error fetching {url}")


@pytest.fixture
def settings() -> Settings:
    return Settings(retry_base_delay=0.0, cache_dir="unused")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache(store: InMemoryStore, settings: Settings, clock: FakeClock) -> PreviewCache:
    return PreviewCache(store, settings, clock=clock)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def orchestrator(extractor: FakeExtractor, cache: PreviewCache, settings: Settings) -> PreviewOrchestrator:
    return PreviewOrchestrator(extractor, cache, settings)


@pytest.fixture
def og_html() -> str:
    """Page with full Open Graph, Twitter Card and HTML metadata."""
    return """
    <html><head>
        <title>HTML Title</title>
        <meta property="og:title" content="  OG Title  ">
        <meta property="og:description" content="OG description of the page.">
        <meta property="og:image" content="/images/cover.png">
        <meta property="og:site_name" content="Example Site">
        <meta property="og:type" content="article">
        <meta name="twitter:title" content="Twitter Title">
        <meta name="twitter:description" content="Twitter description">
        <meta name="twitter:image" content="https://cdn.example.com/twitter.png">
        <meta name="description" content="Plain description">
        <link rel="icon" href="/favicon.ico">
    </head><body><h1>Hello</h1></body></html>
    """


@pytest.fixture
def twitter_only_html() -> str:
    return """
    <html><head>
        <title>HTML Title</title>
        <meta name="twitter:title" content="Twitter Title">
        <meta name="twitter:description" content="Twitter description">
        <meta name="twitter:image" content="https://cdn.example.com/twitter.png">
        <meta name="twitter:site" content="@example">
    </head><body></body></html>
    """


@pytest.fixture
def plain_html() -> str:
    """Only HTML fallbacks: <title>, meta description and a shortcut icon."""
    return """
    <html><head>
        <title>
            Plain   Title
        </title>
        <meta name="description" content="Plain description">
        <link rel="shortcut icon" href="favicon.ico">
    </head><body></body></html>
    """
