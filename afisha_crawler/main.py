"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from afisha_crawler.config import Config, CrawlSettings, config
from afisha_crawler.fetch.client import BudgetedFetcher
from afisha_crawler.jobs.publish import publish
from afisha_crawler.jobs.runner import CrawlRunner
from afisha_crawler.logging_conf import setup_logging
from afisha_crawler.notify.telegram import TelegramNotifier
from afisha_crawler.parse.models import CrawlResult
from afisha_crawler.store.catalog import MemoryCatalog, SupabaseCatalog
from afisha_crawler.store.checkpoint import CheckpointStore
from afisha_crawler.store.kv import KeyValueBackend, create_backend

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Theatre afisha crawler")

    # Storage
    parser.add_argument(
        "--backend",
        choices=["sqlite", "file", "memory"],
        default=None,
        help=f"Checkpoint storage backend (default: {config.STORAGE_BACKEND})",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Discard the saved checkpoint and seen index before running",
    )

    # Invocation control
    parser.add_argument(
        "--until-complete",
        action="store_true",
        help="Keep running invocations until the crawl completes",
    )
    parser.add_argument(
        "--max-invocations",
        type=int,
        default=20,
        help="Upper bound on invocations with --until-complete (default: 20)",
    )

    # Budgets
    parser.add_argument(
        "--max-subrequests",
        type=int,
        default=None,
        help=f"Request ceiling per invocation (default: {config.MAX_SUBREQUESTS})",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help=f"Concurrent jobs (default: {config.MAX_CONCURRENT_JOBS})",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help=f"Dates per invocation (default: {config.CHUNK_SIZE})",
    )
    parser.add_argument(
        "--max-wall-seconds",
        type=float,
        default=None,
        help=f"Wall-clock budget per invocation (default: {config.MAX_WALL_SECONDS})",
    )
    parser.add_argument(
        "--minimal",
        action="store_true",
        help="Minimal HTML parsing (title, url, date only)",
    )

    # Output
    parser.add_argument(
        "--publish",
        action="store_true",
        help="Write results to the catalog and notify subscribers",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run: publish into an in-memory catalog, no Supabase writes",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: {config.LOG_LEVEL})",
    )

    return parser.parse_args(argv)


def apply_overrides(args: argparse.Namespace) -> None:
    """Write CLI overrides into the configuration."""
    overrides = {
        "STORAGE_BACKEND": args.backend,
        "MAX_SUBREQUESTS": args.max_subrequests,
        "MAX_CONCURRENT_JOBS": args.concurrency,
        "CHUNK_SIZE": args.chunk_size,
        "MAX_WALL_SECONDS": args.max_wall_seconds,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(Config, name, value)
    if args.minimal:
        Config.MINIMAL_HTML_PARSING = True


def build_fetcher() -> BudgetedFetcher:
    return BudgetedFetcher(
        max_subrequests=config.MAX_SUBREQUESTS,
        max_retries=config.MAX_RETRIES,
        retry_delay=config.RETRY_DELAY,
        max_cache_entries=config.MAX_CACHE_ENTRIES,
        timeout=config.TIMEOUT,
        user_agent=config.USER_AGENT,
        rate_per_domain=config.RATE_PER_DOMAIN,
    )


async def run_once(backend: KeyValueBackend) -> CrawlResult:
    """One invocation with a fresh fetcher (fresh request counter and cache)."""
    store = CheckpointStore(
        backend,
        ttl_seconds=config.STATE_TTL_SECONDS,
        max_age_hours=config.STATE_MAX_AGE_HOURS,
    )
    async with build_fetcher() as fetcher:
        runner = CrawlRunner(fetcher, store, settings=CrawlSettings.from_config(config))
        return await runner.run()


async def run(args: argparse.Namespace) -> int:
    backend = create_backend(config.STORAGE_BACKEND)
    if args.reset:
        store = CheckpointStore(backend)
        await store.clear()
        await store.clear_seen()
        logger.info("Saved state cleared")

    invocations = max(1, args.max_invocations) if args.until_complete else 1
    result: Optional[CrawlResult] = None
    for number in range(1, invocations + 1):
        logger.info(f"Invocation {number}/{invocations}")
        result = await run_once(backend)
        logger.info(
            f"Invocation {number}: {len(result.shows)} shows, complete={result.is_complete}, "
            f"subrequests={result.request_count}, stop_reason={result.stop_reason}"
        )
        if result.total_failure:
            logger.error("Every fetch failed in this invocation")
            return 1
        if result.is_complete or result.stop_reason == "no_dates":
            break
    else:
        if args.until_complete:
            logger.warning(f"Crawl not complete after {invocations} invocations")

    if args.publish and result is not None:
        await publish_results(result, dry_run=args.dry_run)
    return 0


async def publish_results(result: CrawlResult, dry_run: bool) -> None:
    catalog = MemoryCatalog() if dry_run else SupabaseCatalog()
    notifier = None
    if not dry_run and config.TELEGRAM_BOT_TOKEN:
        notifier = TelegramNotifier()
    try:
        report = await publish(result.shows, catalog, notifier)
        logger.info(f"Publish report: {report.to_dict()}")
    finally:
        if notifier is not None:
            await notifier.aclose()


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    apply_overrides(args)

    # Catalog settings are only needed when publishing for real
    try:
        Config.validate(require_catalog=args.publish and not args.dry_run)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.dry_run:
        logger.info("DRY-RUN mode: Supabase writes disabled")

    logger.info("=" * 60)
    logger.info("Afisha crawler starting")
    logger.info(f"Source: {config.BASE_URL}")
    logger.info(f"Backend: {config.STORAGE_BACKEND}")
    logger.info(f"Max subrequests: {config.MAX_SUBREQUESTS}")
    logger.info(f"Concurrency: {config.MAX_CONCURRENT_JOBS}")
    logger.info(f"Chunk size: {config.CHUNK_SIZE}")
    logger.info(f"Wall budget: {config.MAX_WALL_SECONDS}s")
    logger.info("=" * 60)

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
