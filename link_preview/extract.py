"""Metadata extraction: one bounded HTTP fetch, then Open Graph parsing.

Each logical field is read through an ordered chain of rules
(Open Graph, then Twitter Card, then plain HTML); the first non-empty
value wins and sources are never merged.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

import httpx
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from .config import Settings, get_settings
from .enhance import quality_score
from .models import FetchError, FetchErrorKind, PreviewRecord, content_hash
from .urls import (
    first_path_segment,
    hostname_of,
    is_valid_url,
    longest_suffix_match,
    resolve_url,
)

logger = logging.getLogger(__name__)

Rule = Callable[[BeautifulSoup], Optional[str]]
ExtractResult = Union[PreviewRecord, FetchError]


# ---------------------------------------------------------------------------
# Rule chain
# ---------------------------------------------------------------------------

def meta_property(name: str) -> Rule:
    def rule(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find("meta", attrs={"property": name})
        return tag.get("content") if tag else None
    return rule


def meta_name(name: str) -> Rule:
    def rule(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find("meta", attrs={"name": name})
        return tag.get("content") if tag else None
    return rule


def tag_text(name: str) -> Rule:
    def rule(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find(name)
        return tag.get_text(" ", strip=True) if tag else None
    return rule


def link_href(rel: str) -> Rule:
    # rel is multi-valued: "icon" also matches rel="shortcut icon"
    def rule(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find("link", rel=rel)
        return tag.get("href") if tag else None
    return rule


TITLE_RULES: Tuple[Rule, ...] = (
    meta_property("og:title"),
    meta_name("twitter:title"),
    tag_text("title"),
)
DESCRIPTION_RULES: Tuple[Rule, ...] = (
    meta_property("og:description"),
    meta_name("twitter:description"),
    meta_name("description"),
)
IMAGE_RULES: Tuple[Rule, ...] = (
    meta_property("og:image"),
    meta_name("twitter:image"),
    link_href("icon"),
)
SITE_NAME_RULES: Tuple[Rule, ...] = (
    meta_property("og:site_name"),
    meta_name("twitter:site"),
)
TYPE_RULES: Tuple[Rule, ...] = (meta_property("og:type"),)
CANONICAL_RULES: Tuple[Rule, ...] = (
    meta_property("og:url"),
    link_href("canonical"),
)


def first_match(soup: BeautifulSoup, rules: Sequence[Rule]) -> Optional[str]:
    """Return the first non-empty, stripped value produced by *rules*."""
    for rule in rules:
        value = rule(soup)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit].strip() or None


def _declares_no_store(soup: BeautifulSoup, headers: Dict[str, str]) -> bool:
    if "no-store" in headers.get("cache-control", "").lower():
        return True
    tag = soup.find("meta", attrs={"http-equiv": lambda v: v and v.lower() == "cache-control"})
    return bool(tag and "no-store" in (tag.get("content") or "").lower())


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

def _normalize_headers(headers: httpx.Headers) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def _client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.fetch_timeout_seconds,
        follow_redirects=True,
        headers={
            "user-agent": settings.user_agent,
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": settings.accept_language,
        },
    )


def _too_large(url: str, limit: int) -> FetchError:
    return FetchError(
        url=url,
        kind=FetchErrorKind.TOO_LARGE,
        message=f"Response for {url} exceeds {limit} bytes",
    )


def _decode(body: bytes, encoding: Optional[str]) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class MetadataExtractor:
    """Fetch a page once and turn its metadata into a :class:`PreviewRecord`."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = _client(self.settings)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def extract(
        self,
        url: str,
        *,
        force_refresh: bool = False,
        timeout: Optional[float] = None,
    ) -> ExtractResult:
        """Fetch *url* and extract its preview metadata.

        Args:
            url: Absolute http(s) URL.
            force_refresh: Ask intermediaries for a fresh copy.
            timeout: Per-request timeout in seconds; defaults to settings.

        Returns:
            A PreviewRecord on success, otherwise a FetchError. Nothing is
            raised for origin or transport failures.
        """
        if not is_valid_url(url):
            return FetchError(url=url, kind=FetchErrorKind.INVALID_URL, message="Invalid URL format")

        s = self.settings
        timeout = s.fetch_timeout_seconds if timeout is None else timeout
        request_headers = {"cache-control": "no-cache"} if force_refresh else {}
        logger.info("Fetching: %s (timeout=%.1fs)", url, timeout)

        try:
            async with self._get_client().stream(
                "GET", url, headers=request_headers, timeout=timeout, follow_redirects=True
            ) as resp:
                if resp.status_code >= 400:
                    logger.warning("HTTP %d for %s", resp.status_code, url)
                    return FetchError(
                        url=url,
                        kind=FetchErrorKind.HTTP_STATUS,
                        message=f"HTTP {resp.status_code} for {url}",
                        status_code=resp.status_code,
                    )

                declared = resp.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > s.max_content_bytes:
                    return _too_large(url, s.max_content_bytes)

                body = bytearray()
                async for chunk in resp.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > s.max_content_bytes:
                        return _too_large(url, s.max_content_bytes)

                page_url = str(resp.url)
                headers = _normalize_headers(resp.headers)
                encoding = resp.charset_encoding
        except httpx.InvalidURL as exc:
            logger.warning("Rejected URL %r: %s", url, exc)
            return FetchError(url=url, kind=FetchErrorKind.INVALID_URL, message="Invalid URL format")
        except httpx.TimeoutException as exc:
            logger.warning("Timeout fetching %s: %s", url, exc)
            return FetchError(
                url=url,
                kind=FetchErrorKind.TIMEOUT,
                message=f"Timed out after {timeout}s fetching {url}",
            )
        except httpx.HTTPError as exc:
            logger.warning("Network error fetching %s: %s", url, exc)
            return FetchError(
                url=url,
                kind=FetchErrorKind.NETWORK,
                message=f"Network error fetching {url}: {exc}",
            )

        html = _decode(bytes(body), encoding)
        if not html.strip():
            return FetchError(url=url, kind=FetchErrorKind.PARSE, message=f"Empty response body for {url}")

        try:
            record = self.parse(html, page_url, source_url=url, headers=headers)
        except (ParserRejectedMarkup, ValueError) as exc:
            logger.warning("Unparseable HTML from %s: %s", url, exc)
            return FetchError(url=url, kind=FetchErrorKind.PARSE, message=f"Could not parse {url}: {exc}")

        logger.info("Extracted: %s (hash=%s)", url, record.content_hash[:12])
        return record

    def parse(
        self,
        html: str,
        page_url: str,
        *,
        source_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> PreviewRecord:
        """Build a record from an already fetched document.

        ``page_url`` is the URL the body was served from (after redirects)
        and is the base for relative links; ``source_url`` is the URL the
        caller asked for and drives first-party classification.
        """
        s = self.settings
        source_url = source_url or page_url
        soup = BeautifulSoup(html, "html.parser")

        canonical = resolve_url(first_match(soup, CANONICAL_RULES), page_url)
        title = _clip(first_match(soup, TITLE_RULES), s.max_title_length)
        description = _clip(
            first_match(soup, DESCRIPTION_RULES), s.max_extracted_description_length
        )
        image_url = resolve_url(first_match(soup, IMAGE_RULES), canonical or page_url)
        site_name = _clip(first_match(soup, SITE_NAME_RULES), s.max_site_name_length)
        official, service = self.classify(source_url)

        record_url = canonical or source_url
        record = PreviewRecord(
            url=record_url,
            title=title,
            description=description,
            image_url=image_url,
            site_name=site_name,
            content_type=first_match(soup, TYPE_RULES) or "website",
            is_first_party_official=official,
            official_service_name=service,
            content_hash=content_hash(record_url, title, description),
            is_dynamic=_declares_no_store(soup, headers or {}),
        )
        record.quality_score = quality_score(record)
        return record

    def classify(self, url: str) -> Tuple[bool, Optional[str]]:
        """Return (is_first_party_official, service_name) for *url*."""
        host = hostname_of(url)
        if not host or longest_suffix_match(host, self.settings.first_party_domains) is None:
            return False, None
        segment = first_path_segment(url)
        return True, segment.upper() if segment else None
