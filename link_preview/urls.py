"""URL helpers shared by the extractor, cache and orchestrator."""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit

ALLOWED_SCHEMES = frozenset({"http", "https"})
CONTROL_CHARS = frozenset(chr(c) for c in (*range(0x20), 0x7F))


def is_valid_url(url: object) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    # urlsplit silently drops tab and newline; httpx rejects them
    if any(ch in CONTROL_CHARS for ch in url):
        return False
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_SCHEMES and bool(host)


def hostname_of(url: str) -> Optional[str]:
    """Lower-cased host of *url*, or None when it cannot be parsed."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def host_matches(host: str, domain: str) -> bool:
    """True when *host* equals *domain* or is one of its subdomains."""
    host = host.lower().rstrip(".")
    domain = domain.lower().strip(".")
    return host == domain or host.endswith("." + domain)


def longest_suffix_match(host: str, domains: Iterable[str]) -> Optional[str]:
    """Return the most specific entry of *domains* matching *host*.

    Ties between equally long suffixes cannot occur for distinct domains,
    so the result is deterministic regardless of iteration order.
    """
    best: Optional[str] = None
    for domain in domains:
        if host_matches(host, domain) and (best is None or len(domain) > len(best)):
            best = domain
    return best


def resolve_url(value: Optional[str], base: str) -> Optional[str]:
    """Resolve *value* against *base*; drop anything that isn't absolute http(s)."""
    if not value or not value.strip():
        return None
    try:
        resolved = urljoin(base, value.strip())
    except ValueError:
        return None
    return resolved if is_valid_url(resolved) else None


def first_path_segment(url: str) -> Optional[str]:
    try:
        segments = [p for p in urlsplit(url).path.split("/") if p]
    except ValueError:
        return None
    return segments[0] if segments else None


def url_digest(url: str) -> str:
    """Stable store key for a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()
