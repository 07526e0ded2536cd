"""Domain-aware preview cache on top of a :class:`CacheStore`.

The cache owns TTL selection, lazy and active expiry, and the projection
of records down to their durable fields. It never fetches anything.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional

from .config import Settings, get_settings
from .exceptions import CacheUnavailable
from .models import CacheEntry, CacheStatistics, PreviewRecord, PreviewSource, utc_now
from .store import CacheStore
from .urls import hostname_of, longest_suffix_match, url_digest

logger = logging.getLogger(__name__)

DURABLE_FIELDS = (
    "url",
    "title",
    "description",
    "image_url",
    "site_name",
    "content_type",
    "content_hash",
    "quality_score",
)
FIRST_PARTY_FIELDS = (
    "is_first_party_official",
    "official_service_name",
    "service_enhancements",
)


class PreviewCache:
    """Maps a URL to its previously computed, optimized preview."""

    def __init__(
        self,
        store: CacheStore,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock

    # -- policy -------------------------------------------------------------

    def determine_ttl(self, url: str, override: Optional[int] = None) -> int:
        """TTL in hours for *url*.

        A valid override wins; otherwise the most specific domain suffix in
        the TTL table; otherwise the default.
        """
        s = self.settings
        if override is not None and s.cache_min_ttl_hours <= override <= s.cache_max_ttl_hours:
            return override

        host = hostname_of(url)
        if host:
            domain = longest_suffix_match(host, s.cache_ttl_by_domain)
            if domain is not None:
                return s.cache_ttl_by_domain[domain]
        return s.cache_default_ttl_hours

    @staticmethod
    def is_cacheable(record: PreviewRecord) -> bool:
        if record.error:
            return False
        if not (record.title or record.description or record.image_url):
            return False
        return not record.is_dynamic

    @staticmethod
    def optimize(record: PreviewRecord) -> Dict[str, Any]:
        """Project *record* down to the fields worth persisting."""
        fields = DURABLE_FIELDS
        if record.is_first_party_official:
            fields = fields + FIRST_PARTY_FIELDS
        return record.model_dump(include=set(fields), mode="json")

    # -- reads --------------------------------------------------------------

    async def get(self, url: str) -> Optional[PreviewRecord]:
        """Return the cached preview for *url*, expiring it lazily."""
        key = url_digest(url)
        item = await self.store.get_item(key)
        if item is None:
            return None

        entry = CacheEntry.model_validate(item)
        now = self._clock()
        if entry.is_expired(now):
            logger.info("Cache entry expired: %s", url)
            await self.store.delete_item(key)
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        try:
            await self.store.put_item(key, entry.model_dump(mode="json"))
        except CacheUnavailable as exc:
            logger.warning("Could not record cache access for %s: %s", url, exc)

        logger.debug("Cache hit: %s (accessCount=%d)", url, entry.access_count)
        return PreviewRecord.model_validate(
            {
                **entry.payload,
                "source": PreviewSource.CACHE,
                "from_cache": True,
                "generated_at": entry.created_at,
            }
        )

    async def get_bulk(self, urls: Iterable[str]) -> Dict[str, Optional[PreviewRecord]]:
        unique = list(dict.fromkeys(urls))

        async def lookup(url: str) -> Optional[PreviewRecord]:
            try:
                return await self.get(url)
            except CacheUnavailable as exc:
                logger.warning("Bulk cache lookup failed for %s: %s", url, exc)
                return None

        results = await asyncio.gather(*(lookup(u) for u in unique))
        return dict(zip(unique, results))

    async def statistics(self) -> CacheStatistics:
        s = self.settings
        return CacheStatistics(
            total_entries=await self.store.count(),
            generated_at=self._clock(),
            config={
                "defaultTtlHours": s.cache_default_ttl_hours,
                "minTtlHours": s.cache_min_ttl_hours,
                "maxTtlHours": s.cache_max_ttl_hours,
                "ttlByDomain": dict(s.cache_ttl_by_domain),
            },
        )

    # -- writes -------------------------------------------------------------

    async def put(self, url: str, record: PreviewRecord, ttl_hours: Optional[int] = None) -> bool:
        """Persist *record* under *url*; False when it isn't cacheable."""
        if not self.is_cacheable(record):
            logger.debug("Not cacheable: %s", url)
            return False

        ttl = self.determine_ttl(url, ttl_hours)
        now = self._clock()
        entry = CacheEntry(
            key=url,
            payload=self.optimize(record),
            created_at=now,
            last_accessed_at=now,
            access_count=0,
            expires_at=int((now + timedelta(hours=ttl)).timestamp()),
        )
        await self.store.put_item(url_digest(url), entry.model_dump(mode="json"))
        logger.info("Cached: %s (ttl=%dh)", url, ttl)
        return True

    async def delete(self, url: str) -> bool:
        return await self.store.delete_item(url_digest(url))

    async def cleanup_expired(self) -> int:
        """Remove every expired entry; returns how many were deleted."""
        now_ts = int(self._clock().timestamp())
        expired = await self.store.scan(lambda item: item.get("expires_at", 0) < now_ts)

        deleted = 0
        for item in expired:
            if await self.store.delete_item(url_digest(item["key"])):
                deleted += 1
        logger.info("Removed %d expired cache entries", deleted)
        return deleted
