"""Command-line entry point.

Commands:
    serve           run the HTTP API with the sync loop and startup backfill
    sync            run one sync cycle and exit
    backfill        run one timestamp backfill pass and exit
    init-db         create the order_analysis schema
    reset-analysis  delete every order_analysis row (requires --yes)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from interchain_swap_analytics.config import Settings, get_settings
from interchain_swap_analytics.errors import SwapAnalyticsError
from interchain_swap_analytics.pipeline import Pipeline
from interchain_swap_analytics.storage.database import DatabaseManager, reset_analysis_table

logger = logging.getLogger("interchain_swap_analytics")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
    )


def _analysis_db(settings: Settings) -> DatabaseManager:
    return DatabaseManager(
        settings.analysis_db.url,
        pool_size=settings.analysis_db.pool_size,
        query_timeout_seconds=settings.analysis_db.query_timeout_seconds,
    )


async def _run_sync(settings: Settings) -> int:
    pipeline = Pipeline(settings, backfill_on_startup=False)
    # start() runs one sync cycle before the loop is scheduled.
    async with pipeline:
        stats = pipeline.sync_service.stats if pipeline.sync_service else None
    if stats is None or stats.failed_syncs:
        return 1
    logger.info("Sync inserted %d records", stats.records_inserted)
    return 0


async def _run_backfill(settings: Settings) -> int:
    # Backfill works on order_analysis alone; the source store is never opened.
    async with Pipeline(settings, backfill_on_startup=False, sync_enabled=False) as pipeline:
        result = await pipeline.run_backfill()
    logger.info(
        "Backfill: %d selected, %d patched, %d unresolved, %d failed",
        result.selected,
        result.patched,
        result.unresolved,
        result.failed,
    )
    return 1 if result.failed else 0


async def _init_db(settings: Settings) -> int:
    db = _analysis_db(settings)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


async def _reset_analysis(settings: Settings) -> int:
    db = _analysis_db(settings)
    try:
        removed = await reset_analysis_table(db.engine)
    finally:
        await db.dispose_async()
    logger.info("Removed %d order_analysis rows", removed)
    return 0


def _serve(settings: Settings) -> int:
    import uvicorn

    from interchain_swap_analytics.api.app import create_app

    app = create_app(pipeline=Pipeline(settings), manage_pipeline=True)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="interchain-swap-analytics",
        description="Cross-chain swap order sync, timestamp backfill, and timing analytics.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the HTTP API with the background sync loop")
    sub.add_parser("sync", help="Run one sync cycle and exit")
    sub.add_parser("backfill", help="Run one timestamp backfill pass and exit")
    sub.add_parser("init-db", help="Create the analysis store schema")
    reset = sub.add_parser("reset-analysis", help="Delete every row of order_analysis")
    reset.add_argument("--yes", action="store_true", help="Confirm the destructive reset")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    _configure_logging(settings)
    logger.debug("Settings: %s", settings.redacted_summary())

    if args.command == "reset-analysis" and not args.yes:
        logger.error("Refusing to reset order_analysis without --yes")
        return 2

    try:
        if args.command == "serve":
            return _serve(settings)
        if args.command == "sync":
            return asyncio.run(_run_sync(settings))
        if args.command == "backfill":
            return asyncio.run(_run_backfill(settings))
        if args.command == "init-db":
            return asyncio.run(_init_db(settings))
        if args.command == "reset-analysis":
            return asyncio.run(_reset_analysis(settings))
    except SwapAnalyticsError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
