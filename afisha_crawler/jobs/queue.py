"""Bounded-concurrency queue of "scrape one day" jobs."""
import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Optional

from afisha_crawler.config import config
from afisha_crawler.fetch.client import BudgetedFetcher, BudgetExceeded
from afisha_crawler.parse.html_parser import extract_shows, scan_candidate_ids
from afisha_crawler.parse.models import Job, Show
from afisha_crawler.store.checkpoint import CheckpointStore

logger = logging.getLogger(__name__)

JobProcessor = Callable[[Job], Awaitable[list[Show]]]


class JobQueue:
    """
    Runs at most max_concurrent jobs at once on the event loop.

    Each job runs at most once per invocation. A job that raises is logged
    and counts as zero shows, except BudgetExceeded: that job goes back to
    the front of the queue and nothing new is launched afterwards.
    """

    def __init__(
        self,
        fetcher: BudgetedFetcher,
        max_concurrent: int = config.MAX_CONCURRENT_JOBS,
        process: Optional[JobProcessor] = None,
        store: Optional[CheckpointStore] = None,
        minimal: bool = config.MINIMAL_HTML_PARSING,
        tz_name: str = config.SOURCE_TIMEZONE,
    ):
        self.fetcher = fetcher
        self.max_concurrent = max(1, max_concurrent)
        self.process: JobProcessor = process or self.scrape_day
        self.store = store
        self.minimal = minimal
        self.tz_name = tz_name

        self._queue: deque[Job] = deque()
        self._arrival: dict[int, int] = {}
        self._running: dict[asyncio.Task, Job] = {}
        self._results: list[Show] = []
        self._completed: list[Job] = []
        self._failed: list[Job] = []
        self._skipped_days: list[str] = []
        self._budget_hit = False
        self._closed = False
        self.timed_out = False
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def budget_exhausted(self) -> bool:
        return self._budget_hit

    @property
    def running_count(self) -> int:
        return len(self._running)

    def add(self, job: Job) -> None:
        """Queue a job and start it if a slot is free."""
        self._arrival.setdefault(id(job), len(self._arrival))
        self._queue.append(job)
        self._launch()

    def _launch(self) -> None:
        while (
            not self._closed
            and not self._budget_hit
            and self._queue
            and len(self._running) < self.max_concurrent
        ):
            job = self._queue.popleft()
            task = asyncio.create_task(self._run(job), name=f"scrape-{job.day}")
            self._running[task] = job

        if self._running:
            self._drained.clear()
        else:
            if self._budget_hit and self._queue:
                logger.warning(
                    f"Stopping job processing due to subrequest limit, {len(self._queue)} jobs left"
                )
            self._drained.set()

    async def _run(self, job: Job) -> None:
        task = asyncio.current_task()
        try:
            shows = await self.process(job)
        except BudgetExceeded:
            logger.warning(f"Hit subrequest limit while processing {job.url}")
            self._budget_hit = True
            # No network attempt was made for this day; keep it pending
            self._requeue([job])
        except Exception as e:
            logger.error(f"Error processing job for {job.url}: {e}", exc_info=True)
            self._failed.append(job)
            self._completed.append(job)
        else:
            self._results.extend(shows)
            self._completed.append(job)
        finally:
            self._running.pop(task, None)
            if not self._closed:
                self._launch()

    def _requeue(self, jobs: list[Job]) -> None:
        # Pending jobs stay in the order they were added
        pending = [*self._queue, *jobs]
        pending.sort(key=lambda j: self._arrival.get(id(j), len(self._arrival)))
        self._queue = deque(pending)

    async def scrape_day(self, job: Job) -> list[Show]:
        """Default job: fetch the day page and extract its shows."""
        html_content = await self.fetcher.fetch(job.url)

        if self.store is None:
            return extract_shows(html_content, job.day, minimal=self.minimal, tz_name=self.tz_name)

        if not self.minimal:
            candidate_ids = scan_candidate_ids(html_content, job.day, self.tz_name)
            if candidate_ids and await self.store.all_seen(candidate_ids):
                logger.debug(f"All {len(candidate_ids)} shows on {job.day} already seen, skipping parse")
                self._skipped_days.append(job.day)
                return []

        shows = extract_shows(html_content, job.day, minimal=self.minimal, tz_name=self.tz_name)
        logger.debug(f"Found {len(shows)} shows on {job.day}")
        return shows

    async def wait_for_completion(self, timeout: Optional[float] = None) -> list[Show]:
        """
        Wait for the queue to drain or for timeout seconds, whichever is first.

        On timeout, in-flight jobs are cancelled and returned to the pending
        list; results gathered so far are returned.
        """
        try:
            await asyncio.wait_for(self._drained.wait(), timeout)
        except asyncio.TimeoutError:
            self.timed_out = True
            logger.warning(
                f"Time limit reached ({len(self._completed)} jobs done, "
                f"{len(self._results)} shows found). Returning partial results."
            )
            await self.cancel()
        return list(self._results)

    async def cancel(self) -> None:
        """Stop launching, cancel in-flight jobs and re-queue them."""
        self._closed = True
        if not self._running:
            return
        tasks = list(self._running)
        abandoned = [self._running[task] for task in tasks]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
        self._requeue(abandoned)
        self._drained.set()

    def get_results(self) -> list[Show]:
        return list(self._results)

    def get_pending_jobs(self) -> list[Job]:
        """Jobs not yet run (copy), for checkpointing."""
        return list(self._queue)

    def get_completed_jobs(self) -> list[Job]:
        return list(self._completed)

    def get_failed_jobs(self) -> list[Job]:
        return list(self._failed)

    def get_skipped_days(self) -> list[str]:
        return list(self._skipped_days)
