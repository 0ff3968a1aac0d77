"""Tests for the job queue."""
import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from conftest import BASE_URL, day_page, listing_html

from afisha_crawler.fetch.client import BudgetedFetcher, BudgetExceeded
from afisha_crawler.jobs.queue import JobQueue
from afisha_crawler.parse.html_parser import extract_shows
from afisha_crawler.parse.models import Job, Show
from afisha_crawler.store.checkpoint import CheckpointStore
from afisha_crawler.store.kv import MemoryKV


def job(day: str) -> Job:
    return Job(url=f"{BASE_URL}/afisha/{day}", day=day)


def show_for(day: str) -> Show:
    return Show.build(
        title=f"Show {day}",
        url=f"/vystava/{day}",
        occurs_at=datetime.fromisoformat(f"{day}T19:00:00+00:00"),
    )


@pytest.mark.asyncio
async def test_concurrency_is_bounded(make_fetcher):
    running = 0
    peak = 0

    async def process(j):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return [show_for(j.day)]

    queue = JobQueue(make_fetcher(), max_concurrent=2, process=process)
    for d in range(1, 6):
        queue.add(job(f"2025-06-{d:02d}"))
        assert queue.running_count <= 2

    results = await queue.wait_for_completion(timeout=5)

    assert peak == 2
    assert len(results) == 5
    assert len(queue.get_completed_jobs()) == 5
    assert queue.get_pending_jobs() == []


@pytest.mark.asyncio
async def test_failing_job_counts_as_empty(make_fetcher):
    async def process(j):
        if j.day == "2025-06-02":
            raise ValueError("broken page")
        return [show_for(j.day)]

    queue = JobQueue(make_fetcher(), max_concurrent=1, process=process)
    for day in ("2025-06-01", "2025-06-02", "2025-06-03"):
        queue.add(job(day))

    results = await queue.wait_for_completion(timeout=5)

    assert [s.title for s in results] == ["Show 2025-06-01", "Show 2025-06-03"]
    assert [j.day for j in queue.get_failed_jobs()] == ["2025-06-02"]
    assert len(queue.get_completed_jobs()) == 3
    assert not queue.budget_exhausted


@pytest.mark.asyncio
async def test_budget_exceeded_stops_scheduling(make_fetcher):
    attempted = []

    async def process(j):
        attempted.append(j.day)
        if j.day == "2025-06-02":
            raise BudgetExceeded(1)
        return [show_for(j.day)]

    queue = JobQueue(make_fetcher(), max_concurrent=1, process=process)
    for day in ("2025-06-01", "2025-06-02", "2025-06-03", "2025-06-04"):
        queue.add(job(day))

    results = await queue.wait_for_completion(timeout=5)

    assert attempted == ["2025-06-01", "2025-06-02"]
    assert len(results) == 1
    assert queue.budget_exhausted
    assert [j.day for j in queue.get_pending_jobs()] == ["2025-06-02", "2025-06-03", "2025-06-04"]
    assert queue.get_failed_jobs() == []


@pytest.mark.asyncio
async def test_timeout_returns_partial_results_and_requeues(make_fetcher):
    async def process(j):
        if j.day == "2025-06-01":
            return [show_for(j.day)]
        await asyncio.sleep(10)
        return [show_for(j.day)]

    queue = JobQueue(make_fetcher(), max_concurrent=1, process=process)
    for day in ("2025-06-01", "2025-06-02", "2025-06-03"):
        queue.add(job(day))

    results = await queue.wait_for_completion(timeout=0.1)

    assert queue.timed_out
    assert [s.title for s in results] == ["Show 2025-06-01"]
    assert [j.day for j in queue.get_pending_jobs()] == ["2025-06-02", "2025-06-03"]
    assert queue.running_count == 0


@pytest.mark.asyncio
async def test_scrape_day_without_store(router, make_fetcher):
    router.routes["/afisha/2025-06-12"] = (200, day_page(listing_html()))
    fetcher = make_fetcher(max_subrequests=5)
    queue = JobQueue(fetcher, max_concurrent=1)

    queue.add(job("2025-06-12"))
    results = await queue.wait_for_completion(timeout=5)

    assert [s.title for s in results] == ["Гамлет"]
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_scrape_day_returns_full_day_when_some_unseen(router, make_fetcher):
    html = day_page(listing_html(), listing_html(title="Лір", href="/vystava/lear", time="21:00"))
    router.routes["/afisha/2025-06-12"] = (200, html)
    store = CheckpointStore(MemoryKV())
    hamlet, _ = extract_shows(html, "2025-06-12")
    await store.mark_seen(hamlet.id, hamlet.content_hash)

    fetcher = make_fetcher(max_subrequests=5)
    queue = JobQueue(fetcher, max_concurrent=1, store=store)
    queue.add(job("2025-06-12"))
    results = await queue.wait_for_completion(timeout=5)

    assert [s.title for s in results] == ["Гамлет", "Лір"]
    assert queue.get_skipped_days() == []
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_scrape_day_ambiguous_markup_skips_fast_path(router, make_fetcher):
    html = day_page(listing_html()) + '<i class="views-field-field-event-title"></i>'
    router.routes["/afisha/2025-06-12"] = (200, html)
    store = CheckpointStore(MemoryKV())
    (hamlet,) = extract_shows(html, "2025-06-12")
    await store.mark_seen(hamlet.id, hamlet.content_hash)

    fetcher = make_fetcher(max_subrequests=5)
    queue = JobQueue(fetcher, max_concurrent=1, store=store)
    queue.add(job("2025-06-12"))
    results = await queue.wait_for_completion(timeout=5)

    assert [s.id for s in results] == [hamlet.id]
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_scrape_day_skips_parse_when_all_seen(router, make_fetcher):
    html = day_page(listing_html(), listing_html(title="Лір", href="/vystava/lear"))
    router.routes["/afisha/2025-06-12"] = (200, html)
    store = CheckpointStore(MemoryKV())
    for show in extract_shows(html, "2025-06-12"):
        await store.mark_seen(show.id, show.content_hash)

    fetcher = make_fetcher(max_subrequests=5)
    queue = JobQueue(fetcher, max_concurrent=1, store=store)
    queue.add(job("2025-06-12"))
    results = await queue.wait_for_completion(timeout=5)

    assert results == []
    assert queue.get_skipped_days() == ["2025-06-12"]
    assert [j.day for j in queue.get_completed_jobs()] == ["2025-06-12"]
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_scrape_day_budget_exceeded_without_network(router, make_fetcher):
    router.default = (200, day_page(listing_html()))
    fetcher = make_fetcher(max_subrequests=1)
    fetcher.restore_request_count(1)
    queue = JobQueue(fetcher, max_concurrent=2)

    queue.add(job("2025-06-12"))
    queue.add(job("2025-06-13"))
    queue.add(job("2025-06-14"))
    results = await queue.wait_for_completion(timeout=5)

    assert results == []
    assert router.requests == []
    assert queue.budget_exhausted
    assert [j.day for j in queue.get_pending_jobs()] == ["2025-06-12", "2025-06-13", "2025-06-14"]
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_timeout_does_not_retry_cancelled_fetch():
    attempts = []

    async def slow_handler(request):
        attempts.append(request.url.path)
        await asyncio.sleep(1)
        return httpx.Response(200, text=day_page(listing_html()))

    fetcher = BudgetedFetcher(
        max_subrequests=10,
        max_retries=3,
        retry_delay=0.1,
        transport=httpx.MockTransport(slow_handler),
    )
    queue = JobQueue(fetcher, max_concurrent=1)
    queue.add(job("2025-06-12"))

    loop = asyncio.get_running_loop()
    started = loop.time()
    results = await queue.wait_for_completion(timeout=0.2)
    elapsed = loop.time() - started

    assert results == []
    assert queue.timed_out
    assert elapsed < 0.8
    assert len(attempts) == 1
    assert fetcher.request_count == 1
    assert [j.day for j in queue.get_pending_jobs()] == ["2025-06-12"]
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_bounced_jobs_keep_their_order(make_fetcher):
    gate = asyncio.Event()

    async def process(j):
        # Let the later days bounce first
        if j.day == "2025-06-12":
            await gate.wait()
        else:
            gate.set()
            await asyncio.sleep(0)
        raise BudgetExceeded(1)

    queue = JobQueue(make_fetcher(), max_concurrent=3, process=process)
    for day in ("2025-06-12", "2025-06-13", "2025-06-14", "2025-06-15"):
        queue.add(job(day))

    await queue.wait_for_completion(timeout=5)

    assert queue.budget_exhausted
    assert [j.day for j in queue.get_pending_jobs()] == [
        "2025-06-12",
        "2025-06-13",
        "2025-06-14",
        "2025-06-15",
    ]
