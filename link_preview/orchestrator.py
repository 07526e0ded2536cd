"""Public entry point: cache lookup, extraction with retry, enhancement.

Single-URL calls never raise for bad input or a bad origin; failures come
back as error-shaped :class:`PreviewRecord` values. Cache writes run as
detached tasks so a slow or broken store never delays a response.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_incrementing

from . import __version__
from .cache import PreviewCache
from .config import Settings, get_settings
from .enhance import enhance_record
from .exceptions import BatchLimitExceeded, CacheUnavailable
from .extract import ExtractResult, MetadataExtractor
from .models import BatchResult, FetchError, PreviewRecord, PreviewSource, utc_now
from .store import CacheStore, JsonFileStore
from .urls import is_valid_url

logger = logging.getLogger(__name__)

INVALID_URL_MESSAGE = "Invalid URL format"
SERVICE_NAME = "link-preview"

Sleep = Callable[[float], Awaitable[None]]


def _is_failure(result: ExtractResult) -> bool:
    return isinstance(result, FetchError)


def _last_result(retry_state: RetryCallState) -> ExtractResult:
    return retry_state.outcome.result()


def _log_retry(retry_state: RetryCallState) -> None:
    failure = retry_state.outcome.result()
    logger.warning(
        "Preview fetch retry %d for %s: %s",
        retry_state.attempt_number,
        failure.url,
        failure.message,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class PreviewOrchestrator:
    """Combines the extractor and the cache into the preview workflow."""

    def __init__(
        self,
        extractor: MetadataExtractor,
        cache: PreviewCache,
        settings: Optional[Settings] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.extractor = extractor
        self.cache = cache
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._pending_writes: Set[asyncio.Task] = set()

    # -- single URL ---------------------------------------------------------

    async def get_preview(
        self,
        url: str,
        *,
        force_refresh: bool = False,
        enhance: bool = True,
        cache_ttl_hours: Optional[int] = None,
    ) -> PreviewRecord:
        """Return the preview for *url*, from cache when possible.

        Args:
            url: URL to preview.
            force_refresh: Skip the cache read and fetch from the origin.
            enhance: Run the enhancement pass on fresh results. Unenhanced
                results are not written to the cache.
            cache_ttl_hours: TTL override for the cache write.

        Returns:
            A PreviewRecord; check ``error`` to detect failures.
        """
        started = time.monotonic()
        if not is_valid_url(url):
            return PreviewRecord.failure(url, INVALID_URL_MESSAGE)

        use_cache = self.settings.cache_enabled
        if use_cache and not force_refresh:
            cached = await self._read_cache(url)
            if cached is not None:
                cached.response_time_ms = _elapsed_ms(started)
                return cached

        result = await self._extract_with_retry(url, force_refresh=force_refresh)
        if isinstance(result, FetchError):
            logger.error("Preview failed for %s: %s", url, result.message)
            record = result.to_record()
            record.response_time_ms = _elapsed_ms(started)
            return record

        record = result.model_copy(update={"source": PreviewSource.FRESH, "from_cache": False})
        if enhance:
            record = self.enhance(record)
        record.response_time_ms = _elapsed_ms(started)

        # cache readers get enhanced records, so raw ones are never stored
        if use_cache and enhance:
            self._schedule_cache_write(url, record, cache_ttl_hours)
        return record

    def enhance(self, record: PreviewRecord) -> PreviewRecord:
        return enhance_record(
            record,
            max_description_length=self.settings.max_description_length,
            icon_base_url=self.settings.service_icon_base_url,
        )

    async def _read_cache(self, url: str) -> Optional[PreviewRecord]:
        try:
            return await self.cache.get(url)
        except CacheUnavailable as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", url, exc)
            return None

    async def _extract_with_retry(self, url: str, *, force_refresh: bool) -> ExtractResult:
        s = self.settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(1 + s.retry_attempts),
            wait=wait_incrementing(start=s.retry_base_delay, increment=s.retry_base_delay),
            retry=retry_if_result(_is_failure),
            retry_error_callback=_last_result,
            before_sleep=_log_retry,
            sleep=self._sleep,
        )
        return await retrying(
            self.extractor.extract,
            url,
            force_refresh=force_refresh,
            timeout=s.fetch_timeout_seconds,
        )

    # -- background cache writes -------------------------------------------

    def _schedule_cache_write(
        self, url: str, record: PreviewRecord, ttl_hours: Optional[int]
    ) -> None:
        task = asyncio.create_task(self.cache.put(url, record, ttl_hours))
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Cache write failed: %s", exc)

    async def flush_pending_writes(self) -> None:
        """Wait for outstanding cache writes; their failures stay logged only."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    # -- batch --------------------------------------------------------------

    async def get_batch_previews(
        self,
        urls: List[str],
        *,
        force_refresh: bool = False,
        enhance: bool = True,
        preserve_order: bool = True,
        concurrency: Optional[int] = None,
    ) -> BatchResult:
        """Preview several URLs under a bounded number of workers.

        Raises:
            BatchLimitExceeded: When *urls* is empty or too long.
        """
        s = self.settings
        if not isinstance(urls, list) or not urls:
            raise BatchLimitExceeded("INVALID_URLS", "URLs array is required")
        if len(urls) > s.max_batch_size:
            raise BatchLimitExceeded(
                "TOO_MANY_URLS", f"Maximum {s.max_batch_size} URLs allowed per batch"
            )

        started = time.monotonic()
        valid: List[Tuple[int, str]] = []
        invalid: List[Tuple[int, Any]] = []
        for index, url in enumerate(urls):
            (valid if is_valid_url(url) else invalid).append((index, url))

        workers = max(1, min(concurrency or s.batch_concurrency, 10, len(valid) or 1))
        completed = await self._run_workers(
            valid, workers, force_refresh=force_refresh, enhance=enhance
        )
        failures = [
            (index, PreviewRecord.failure(str(url), INVALID_URL_MESSAGE)) for index, url in invalid
        ]

        if preserve_order:
            previews = [record for _, record in sorted(completed + failures, key=lambda p: p[0])]
        else:
            previews = [record for _, record in completed + failures]

        logger.info(
            "Batch finished: %d total, %d valid, %d invalid", len(urls), len(valid), len(invalid)
        )
        return BatchResult(
            total=len(urls),
            valid=len(valid),
            invalid=len(invalid),
            previews=previews,
            response_time_ms=_elapsed_ms(started),
        )

    async def _run_workers(
        self,
        jobs: List[Tuple[int, str]],
        workers: int,
        *,
        force_refresh: bool,
        enhance: bool,
    ) -> List[Tuple[int, PreviewRecord]]:
        queue: asyncio.Queue = asyncio.Queue()
        for job in jobs:
            queue.put_nowait(job)
        completed: List[Tuple[int, PreviewRecord]] = []

        async def worker() -> None:
            while True:
                try:
                    index, url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    record = await self.get_preview(
                        url, force_refresh=force_refresh, enhance=enhance
                    )
                except Exception as exc:
                    logger.exception("Unexpected failure previewing %s", url)
                    record = PreviewRecord.failure(url, str(exc) or type(exc).__name__)
                completed.append((index, record))

        await asyncio.gather(*(worker() for _ in range(workers)))
        return completed

    # -- housekeeping -------------------------------------------------------

    async def statistics(self) -> Dict[str, Any]:
        s = self.settings
        try:
            cache_stats: Dict[str, Any] = (await self.cache.statistics()).model_dump(
                mode="json", by_alias=True
            )
        except CacheUnavailable as exc:
            logger.error("Cache statistics unavailable: %s", exc)
            cache_stats = {"error": str(exc)}
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "config": {
                "maxBatchSize": s.max_batch_size,
                "timeoutSeconds": s.fetch_timeout_seconds,
                "retryAttempts": s.retry_attempts,
                "batchConcurrency": s.batch_concurrency,
            },
            "cache": cache_stats,
            "timestamp": utc_now().isoformat(),
        }

    async def invalidate(self, url: str) -> bool:
        return await self.cache.delete(url)

    async def cleanup_expired(self) -> int:
        return await self.cache.cleanup_expired()

    async def aclose(self) -> None:
        await self.flush_pending_writes()
        await self.extractor.aclose()


def build_orchestrator(
    settings: Optional[Settings] = None, *, store: Optional[CacheStore] = None
) -> PreviewOrchestrator:
    """Wire extractor, cache and orchestrator from settings.

    Uses the JSON file store at ``settings.cache_path`` unless *store* is
    given.
    """
    s = settings or get_settings()
    backing = store if store is not None else JsonFileStore(s.cache_path)
    return PreviewOrchestrator(MetadataExtractor(s), PreviewCache(backing, s), s)
