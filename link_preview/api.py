"""HTTP API for link previews.

Responses use one envelope:
    {"success": true, "data": ..., "meta": {...}}
    {"success": false, "error": {"code": "...", "message": "..."}}

An origin that cannot be fetched is not an API error: the preview
endpoints answer 200 with an error-shaped record.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from . import __version__
from .config import Settings
from .exceptions import BatchLimitExceeded, CacheUnavailable
from .models import PreviewRecord, utc_now
from .orchestrator import SERVICE_NAME, PreviewOrchestrator, build_orchestrator
from .urls import is_valid_url

logger = logging.getLogger(__name__)

CACHED_MAX_AGE = 3600
FRESH_MAX_AGE = 300


class ApiError(Exception):
    """Request-level failure rendered with the error envelope."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


def _envelope(data: Any, **meta: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if meta:
        body["meta"] = meta
    return body


def _dump(record: PreviewRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


def _validated_url(url: Optional[str]) -> str:
    if not url:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "MISSING_URL", "The url parameter is required")
    if not is_valid_url(url):
        raise ApiError(status.HTTP_400_BAD_REQUEST, "INVALID_URL", "Invalid URL format")
    return url


def get_orchestrator(request: Request) -> PreviewOrchestrator:
    return request.app.state.orchestrator


Orchestrator = Annotated[PreviewOrchestrator, Depends(get_orchestrator)]


# =============================================================================
# Request bodies
# =============================================================================

class BatchOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    force_refresh: bool = False
    enhance: bool = True
    preserve_order: bool = True
    # out-of-range values are clamped by the orchestrator
    concurrency: Optional[int] = None


class BatchRequest(BaseModel):
    urls: Any = None
    options: BatchOptions = Field(default_factory=BatchOptions)


class EnhanceRequest(BaseModel):
    preview: Any = None


# =============================================================================
# /preview
# =============================================================================

router = APIRouter(prefix="/preview", tags=["preview"])


@router.get("")
async def get_preview(
    response: Response,
    orchestrator: Orchestrator,
    url: Optional[str] = Query(default=None),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    enhance: bool = Query(default=True),
) -> Dict[str, Any]:
    """Preview a single URL."""
    url = _validated_url(url)
    try:
        preview = await orchestrator.get_preview(url, force_refresh=force_refresh, enhance=enhance)
    except Exception as exc:
        logger.exception("Preview failed unexpectedly for %s", url)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "PREVIEW_ERROR", "Failed to build preview"
        ) from exc

    max_age = CACHED_MAX_AGE if preview.from_cache else FRESH_MAX_AGE
    response.headers["X-Cache"] = "HIT" if preview.from_cache else "MISS"
    response.headers["Cache-Control"] = f"public, max-age={max_age}"
    return _envelope(
        _dump(preview),
        url=url,
        requestTime=utc_now().isoformat(),
        cached=preview.from_cache,
        source=preview.source.value,
    )


@router.post("/batch")
async def get_batch_previews(body: BatchRequest, orchestrator: Orchestrator) -> Dict[str, Any]:
    """Preview up to ``max_batch_size`` URLs in one call."""
    opts = body.options
    result = await orchestrator.get_batch_previews(
        body.urls,
        force_refresh=opts.force_refresh,
        enhance=opts.enhance,
        preserve_order=opts.preserve_order,
        concurrency=opts.concurrency,
    )
    return _envelope(
        {
            "total": result.total,
            "valid": result.valid,
            "invalid": result.invalid,
            "previews": [_dump(p) for p in result.previews],
        },
        requestTime=utc_now().isoformat(),
        responseTimeMs=result.response_time_ms,
        batchSize=result.total,
    )


@router.post("/enhance")
async def enhance_preview(body: EnhanceRequest, orchestrator: Orchestrator) -> Dict[str, Any]:
    """Re-run the enhancement pass on a caller-supplied preview."""
    if not isinstance(body.preview, dict):
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "INVALID_PREVIEW_DATA", "A preview object is required"
        )
    try:
        record = PreviewRecord.model_validate(body.preview)
    except ValidationError as exc:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "INVALID_PREVIEW_DATA", f"Invalid preview data: {exc.error_count()} error(s)"
        ) from exc

    original = record.quality_score
    enhanced = orchestrator.enhance(record)
    return _envelope(
        _dump(enhanced),
        originalQuality=original,
        enhancedQuality=enhanced.quality_score,
        improvement=enhanced.quality_score - original,
    )


@router.get("/stats")
async def get_statistics(orchestrator: Orchestrator) -> Dict[str, Any]:
    return _envelope(await orchestrator.statistics())


@router.get("/health")
async def health_check(orchestrator: Orchestrator) -> JSONResponse:
    stats = await orchestrator.statistics()
    cache_ok = "error" not in stats["cache"]
    data = {
        "status": "healthy" if cache_ok else "degraded",
        "timestamp": utc_now().isoformat(),
        "service": SERVICE_NAME,
        "version": __version__,
        "dependencies": {"cache": cache_ok, "metadata": True},
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if cache_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": cache_ok, "data": data},
    )


@router.get("/config")
async def get_config(orchestrator: Orchestrator) -> Dict[str, Any]:
    s = orchestrator.settings
    return _envelope(
        {
            "maxBatchSize": s.max_batch_size,
            "timeoutSeconds": s.fetch_timeout_seconds,
            "retryAttempts": s.retry_attempts,
            "retryBaseDelay": s.retry_base_delay,
            "batchConcurrency": s.batch_concurrency,
            "maxDescriptionLength": s.max_description_length,
            "cacheEnabled": s.cache_enabled,
            "enhancementEnabled": True,
            "supportedFeatures": [
                "single-preview",
                "batch-preview",
                "cache-integration",
                "quality-enhancement",
                "first-party-enrichment",
            ],
        }
    )


# =============================================================================
# /cache
# =============================================================================

cache_router = APIRouter(prefix="/cache", tags=["cache"])


@cache_router.get("/stats")
async def get_cache_statistics(orchestrator: Orchestrator) -> Dict[str, Any]:
    stats = await orchestrator.cache.statistics()
    return _envelope(stats.model_dump(mode="json", by_alias=True))


@cache_router.delete("/invalidate")
async def invalidate_cache(
    orchestrator: Orchestrator,
    url: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    url = _validated_url(url)
    if not await orchestrator.invalidate(url):
        raise ApiError(status.HTTP_404_NOT_FOUND, "CACHE_NOT_FOUND", "No cached preview for this URL")
    return _envelope({"url": url})


@cache_router.post("/cleanup")
async def cleanup_cache(orchestrator: Orchestrator) -> Dict[str, Any]:
    return _envelope({"deletedCount": await orchestrator.cleanup_expired()})


# =============================================================================
# Application
# =============================================================================

def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        code = "INVALID_URLS" if request.url.path.endswith("/batch") else "INVALID_REQUEST"
        return _error_response(
            status.HTTP_400_BAD_REQUEST, code, f"Invalid request: {len(exc.errors())} error(s)"
        )

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return _error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(BatchLimitExceeded)
    async def _batch_limit(request: Request, exc: BatchLimitExceeded) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc.code, exc.message)

    @app.exception_handler(CacheUnavailable)
    async def _cache_unavailable(request: Request, exc: CacheUnavailable) -> JSONResponse:
        logger.error("Cache unavailable during %s %s: %s", request.method, request.url.path, exc)
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, "CACHE_UNAVAILABLE", "The preview cache is unavailable"
        )


def create_app(
    orchestrator: Optional[PreviewOrchestrator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the API; the orchestrator is created on startup when not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(settings)
        yield
        await app.state.orchestrator.aclose()

    app = FastAPI(title="Link Preview API", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(router)
    app.include_router(cache_router)
    setup_exception_handlers(app)
    return app


app = create_app()
