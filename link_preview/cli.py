"""Command-line interface for the link preview service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, List

from .config import get_settings
from .exceptions import BatchLimitExceeded
from .orchestrator import PreviewOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    p = argparse.ArgumentParser(
        prog="link-preview",
        description="Fetch URL previews and manage the preview cache.",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    # --- preview ---
    preview = sub.add_parser("preview", help="Preview a single URL")
    preview.add_argument("url", help="URL to preview")
    preview.add_argument(
        "--force-refresh", action="store_true", help="Ignore the cache and refetch"
    )
    preview.add_argument(
        "--no-enhance", dest="enhance", action="store_false", help="Skip the enhancement pass"
    )

    # --- batch ---
    batch = sub.add_parser("batch", help="Preview several URLs concurrently")
    batch.add_argument("urls", nargs="+", help="URLs to preview")
    batch.add_argument(
        "--force-refresh", action="store_true", help="Ignore the cache and refetch"
    )
    batch.add_argument(
        "--no-enhance", dest="enhance", action="store_false", help="Skip the enhancement pass"
    )
    batch.add_argument(
        "--concurrency", type=int, default=None, help="Max in-flight fetches (1-10)"
    )
    batch.add_argument(
        "--completion-order",
        dest="preserve_order",
        action="store_false",
        help="Return previews as they finish instead of in input order",
    )

    # --- cache maintenance ---
    sub.add_parser("stats", help="Show service and cache statistics")
    sub.add_parser("cleanup", help="Remove expired cache entries")
    invalidate = sub.add_parser("invalidate", help="Drop the cached preview for a URL")
    invalidate.add_argument("url", help="URL whose cache entry should be removed")

    return p


def _configure_logging(verbose: bool) -> None:
    """Set up root logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _run(
    orchestrator: PreviewOrchestrator,
    action: Callable[[PreviewOrchestrator], Awaitable[Any]],
) -> Any:
    try:
        return await action(orchestrator)
    finally:
        await orchestrator.aclose()


def main(argv: List[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    orchestrator = build_orchestrator(get_settings())

    if args.cmd == "preview":
        record = asyncio.run(
            _run(
                orchestrator,
                lambda o: o.get_preview(
                    args.url, force_refresh=args.force_refresh, enhance=args.enhance
                ),
            )
        )
        _print_json(record.model_dump(mode="json", by_alias=True))
        return 1 if record.is_error else 0

    if args.cmd == "batch":
        try:
            result = asyncio.run(
                _run(
                    orchestrator,
                    lambda o: o.get_batch_previews(
                        args.urls,
                        force_refresh=args.force_refresh,
                        enhance=args.enhance,
                        preserve_order=args.preserve_order,
                        concurrency=args.concurrency,
                    ),
                )
            )
        except BatchLimitExceeded as exc:
            logger.error("%s: %s", exc.code, exc.message)
            return 2
        _print_json(result.model_dump(mode="json", by_alias=True))
        failed = [p for p in result.previews if p.is_error]
        if failed:
            logger.warning("%d/%d URLs failed", len(failed), result.total)
        return 0

    if args.cmd == "stats":
        _print_json(asyncio.run(_run(orchestrator, lambda o: o.statistics())))
        return 0

    if args.cmd == "cleanup":
        deleted = asyncio.run(_run(orchestrator, lambda o: o.cleanup_expired()))
        _print_json({"deletedCount": deleted})
        return 0

    if args.cmd == "invalidate":
        existed = asyncio.run(_run(orchestrator, lambda o: o.invalidate(args.url)))
        _print_json({"url": args.url, "invalidated": existed})
        return 0 if existed else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
