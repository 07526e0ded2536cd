"""Exceptions raised across the preview pipeline.

Origin-side failures are not exceptions: the extractor returns them as
:class:`link_preview.models.FetchError` values so a broken URL can never
fail a batch. The classes here cover caller mistakes and store outages.
"""

from __future__ import annotations


class PreviewError(Exception):
    """Base class for link preview errors."""


class BatchLimitExceeded(PreviewError):
    """The batch input was empty or larger than the configured maximum."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class CacheUnavailable(PreviewError):
    """The backing cache store could not be read or written."""
