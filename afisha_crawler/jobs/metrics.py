"""Counters for one crawl invocation."""
import logging
from collections import defaultdict
from typing import Dict

from afisha_crawler.fetch.client import BudgetedFetcher

logger = logging.getLogger(__name__)


class Metrics:
    """Collects counters and logs the end-of-invocation report."""

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)

    def increment(self, key: str, amount: int = 1) -> None:
        self.counters[key] += amount

    def absorb_fetcher(self, fetcher: BudgetedFetcher) -> None:
        """Copy the fetcher's request accounting."""
        self.counters["requests"] = fetcher.request_count
        self.counters["cache_hits"] = fetcher.cache_hits
        self.counters["fetch_ok"] = fetcher.fetch_successes
        self.counters["fetch_failed"] = fetcher.fetch_failures

    def report(self) -> None:
        c = self.counters
        logger.info(
            f"Jobs: {c['jobs_completed']} done, {c['jobs_failed']} failed, "
            f"{c['jobs_pending']} pending | "
            f"Shows: {c['shows_new']} new this run, {c['shows_total']} accumulated | "
            f"Requests: {c['requests']} ({c['cache_hits']} cache hits, "
            f"{c['fetch_failed']} failed) | "
            f"Dates: {c['dates_processed']}/{c['dates_total']}"
        )
