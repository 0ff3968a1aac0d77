"""Crawl orchestrator: one resumable, budget-bounded invocation."""
import logging
import time
import uuid
from datetime import date
from typing import Callable, Iterable, Optional

from afisha_crawler.config import CrawlSettings
from afisha_crawler.fetch.client import BudgetedFetcher, BudgetExceeded
from afisha_crawler.fetch.endpoints import afisha_url
from afisha_crawler.jobs.discovery import DateDiscoverer
from afisha_crawler.jobs.metrics import Metrics
from afisha_crawler.jobs.queue import JobQueue
from afisha_crawler.jobs.run_control import RunControl
from afisha_crawler.parse.dates import current_date_string
from afisha_crawler.parse.models import CrawlResult, CrawlState, Job, Show
from afisha_crawler.store.checkpoint import CheckpointStore

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def merge_shows(existing: Iterable[Show], new: Iterable[Show]) -> list[Show]:
    """Merge by id; a later version of the same id replaces the earlier one."""
    merged: dict[str, Show] = {}
    for show in existing:
        merged[show.id] = show
    for show in new:
        merged[show.id] = show
    return list(merged.values())


class CrawlRunner:
    """
    Drives one invocation of the crawl.

    1. resume from the checkpoint or discover dates (and checkpoint them)
    2. give up early if the wall-clock budget is already mostly spent
    3. pick the next chunk of unprocessed dates
    4. run carried-over jobs plus the chunk under the remaining time
    5. mark finished dates processed and merge shows by id
    6. clear the checkpoint when complete, save it otherwise
    """

    def __init__(
        self,
        fetcher: BudgetedFetcher,
        store: CheckpointStore,
        settings: Optional[CrawlSettings] = None,
        discoverer: Optional[DateDiscoverer] = None,
        clock: Callable[[], float] = time.monotonic,
        now_ms: Callable[[], int] = _now_ms,
        today: Optional[Callable[[], date]] = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.settings = settings or CrawlSettings.from_config()
        self.discoverer = discoverer or DateDiscoverer(
            fetcher,
            base_url=self.settings.base_url,
            max_dates=self.settings.max_discovered_dates,
        )
        self.clock = clock
        self.now_ms = now_ms
        self.today = today
        self.run_id = str(uuid.uuid4())
        self.metrics = Metrics()

    def _result(
        self,
        state: Optional[CrawlState],
        shows: list[Show],
        is_complete: bool = False,
        stop_reason: Optional[str] = None,
    ) -> CrawlResult:
        self.metrics.absorb_fetcher(self.fetcher)
        return CrawlResult(
            shows=shows,
            is_complete=is_complete,
            request_count=self.fetcher.request_count,
            processed_dates=list(state.processed_dates) if state else [],
            pending_jobs=list(state.pending_jobs) if state else [],
            fetch_attempts=self.fetcher.fetch_attempts,
            fetch_failures=self.fetcher.fetch_failures,
            stop_reason=stop_reason,
        )

    async def _start_or_resume(self) -> tuple[Optional[CrawlState], bool]:
        """Returns (state, resumed)."""
        previous = await self.store.load()
        if previous is not None and previous.all_dates_to_scrape:
            self.fetcher.restore_request_count(previous.request_count)
            logger.info(f"Resuming crawl, restored subrequest count: {self.fetcher.request_count}")
            return previous, True

        self.fetcher.reset_request_count()
        today = current_date_string(self.today() if self.today else None)
        logger.info(f"Starting crawl from {today}")
        try:
            dates = await self.discoverer.discover(today, self.today() if self.today else None)
        except BudgetExceeded:
            logger.warning("Subrequest limit reached during date discovery")
            dates = []

        if not dates:
            logger.info("No dates with events found")
            return None, False

        state = CrawlState(
            last_updated=self.now_ms(),
            all_dates_to_scrape=dates,
            request_count=self.fetcher.request_count,
        )
        # Never repeat discovery if this invocation gets cut short
        await self.store.save(state)
        return state, False

    async def run(self) -> CrawlResult:
        """Run one invocation and return every show accumulated so far."""
        run_control = RunControl(
            max_wall_seconds=self.settings.max_wall_seconds,
            deadline_fraction=self.settings.deadline_fraction,
            clock=self.clock,
        )
        logger.info(f"Run ID: {self.run_id}")

        state: Optional[CrawlState] = None
        try:
            state, resumed = await self._start_or_resume()
            if state is None:
                return self._result(None, [], stop_reason="no_dates")

            if resumed and self.fetcher.budget_exhausted:
                logger.info(
                    f"Returning {len(state.completed_shows)} shows from previous state "
                    f"without additional scraping (subrequest limit reached)"
                )
                # Next invocation starts with a fresh request budget
                await self.store.save(
                    state.model_copy(update={"request_count": 0, "last_updated": self.now_ms()})
                )
                return self._result(state, list(state.completed_shows), stop_reason="budget_exhausted")

            should_stop, reason = run_control.should_stop()
            if should_stop:
                run_control.record_stop(reason)
                return self._result(state, list(state.completed_shows), stop_reason="deadline")

            return await self._cycle(state, run_control)
        except Exception as e:
            logger.error(f"Error during scraping: {e}", exc_info=True)
            shows = list(state.completed_shows) if state else []
            return self._result(state, shows, stop_reason="error")
        finally:
            self.metrics.absorb_fetcher(self.fetcher)
            self.metrics.report()

    async def _cycle(self, state: CrawlState, run_control: RunControl) -> CrawlResult:
        processed = list(state.processed_dates)
        processed_set = set(processed)
        unprocessed = state.unprocessed_dates()
        chunk = unprocessed[: self.settings.chunk_size]
        logger.info(
            f"Processing {len(chunk)} dates out of {len(unprocessed)} remaining "
            f"({len(state.all_dates_to_scrape)} total)"
        )

        queue = JobQueue(
            self.fetcher,
            max_concurrent=self.settings.max_concurrent_jobs,
            store=self.store,
            minimal=self.settings.minimal_parsing,
            tz_name=self.settings.source_timezone,
        )
        queued_days = set()
        carried = [job for job in state.pending_jobs if job.day not in processed_set]
        if carried:
            logger.info(f"Adding {len(carried)} pending jobs from previous state")
        for job in carried:
            queue.add(job)
            queued_days.add(job.day)
        for day in chunk:
            if day not in queued_days:
                queue.add(Job(url=afisha_url(day, self.settings.base_url), day=day))
                queued_days.add(day)

        new_shows = await queue.wait_for_completion(timeout=run_control.remaining())
        if queue.timed_out:
            run_control.record_stop("deadline reached while draining jobs")
        if queue.budget_exhausted:
            run_control.record_stop("subrequest limit reached")

        for job in queue.get_completed_jobs():
            if job.day not in processed_set:
                processed.append(job.day)
                processed_set.add(job.day)
        pending = [job for job in queue.get_pending_jobs() if job.day not in processed_set]
        all_shows = merge_shows(state.completed_shows, new_shows)

        remaining_dates = [day for day in state.all_dates_to_scrape if day not in processed_set]
        budget_exhausted = queue.budget_exhausted or self.fetcher.budget_exhausted
        is_complete = (
            not pending
            and not remaining_dates
            and not budget_exhausted
            and not queue.timed_out
        )

        self.metrics.increment("jobs_completed", len(queue.get_completed_jobs()))
        self.metrics.increment("jobs_failed", len(queue.get_failed_jobs()))
        self.metrics.increment("jobs_pending", len(pending))
        self.metrics.increment("shows_new", len(new_shows))
        self.metrics.increment("shows_total", len(all_shows))
        self.metrics.increment("dates_processed", len(processed))
        self.metrics.increment("dates_total", len(state.all_dates_to_scrape))

        new_state = CrawlState(
            last_updated=self.now_ms(),
            all_dates_to_scrape=list(state.all_dates_to_scrape),
            processed_dates=processed,
            pending_jobs=pending,
            completed_shows=all_shows,
            request_count=self.fetcher.request_count,
        )

        if is_complete:
            logger.info("Scraping completed successfully, clearing saved state")
            await self.store.clear()
            await self.store.clear_seen()
        else:
            logger.info(
                f"Saving state for future resumption: {len(remaining_dates)} dates and "
                f"{len(pending)} jobs left"
            )
            await self.store.save(new_state)
            await self.store.mark_seen_many((show.id, show.content_hash) for show in new_shows)

        logger.info(
            f"Found {len(all_shows)} shows in total. "
            f"Subrequests: {self.fetcher.request_count}/{self.fetcher.max_subrequests}"
        )
        return self._result(
            new_state,
            all_shows,
            is_complete=is_complete,
            stop_reason=run_control.stop_reason,
        )
