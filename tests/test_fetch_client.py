"""Tests for the budgeted fetcher."""
import httpx
import pytest

from afisha_crawler.fetch.client import BudgetedFetcher, BudgetExceeded, FetchError
from afisha_crawler.fetch.rate_limit import RequestPacer

URL = "https://theatre.test/afisha/2025-06-02"


@pytest.mark.asyncio
async def test_fetch_counts_request(router, make_fetcher):
    router.routes["/afisha/2025-06-02"] = (200, "<html>ok</html>")
    fetcher = make_fetcher(max_subrequests=5)

    assert await fetcher.fetch(URL) == "<html>ok</html>"
    assert fetcher.request_count == 1
    assert fetcher.fetch_successes == 1
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_cache_hit_does_not_count(router, make_fetcher):
    router.routes["/afisha/2025-06-02"] = (200, "page")
    fetcher = make_fetcher(max_subrequests=5)

    await fetcher.fetch(URL)
    await fetcher.fetch(URL)

    assert fetcher.request_count == 1
    assert fetcher.cache_hits == 1
    assert router.calls("/afisha/2025-06-02") == 1
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_budget_enforced_across_many_urls(router, make_fetcher):
    router.default = (200, "page")
    fetcher = make_fetcher(max_subrequests=3)

    fetched = 0
    with pytest.raises(BudgetExceeded):
        for day in range(1, 10):
            await fetcher.fetch(f"https://theatre.test/afisha/2025-06-{day:02d}")
            fetched += 1

    assert fetched == 3
    assert len(router.requests) == 3
    assert fetcher.budget_exhausted
    assert fetcher.remaining_budget == 0
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_cached_url_served_after_budget_exhausted(router, make_fetcher):
    router.default = (200, "page")
    fetcher = make_fetcher(max_subrequests=1)

    await fetcher.fetch(URL)
    assert fetcher.budget_exhausted
    assert await fetcher.fetch(URL) == "page"
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_cache_evicted_wholesale_when_full(router, make_fetcher):
    router.default = (200, "page")
    fetcher = make_fetcher(max_subrequests=10, max_cache_entries=2)

    for path in ("a", "b", "c"):
        await fetcher.fetch(f"https://theatre.test/{path}")

    assert fetcher.cached("https://theatre.test/a") is None
    assert fetcher.cached("https://theatre.test/b") is None
    assert fetcher.cached("https://theatre.test/c") == "page"

    await fetcher.fetch("https://theatre.test/a")
    assert router.calls("/a") == 2
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_retries_then_succeeds():
    responses = iter([500, 503, 200])
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(next(responses), text="page")

    fetcher = BudgetedFetcher(
        max_subrequests=10,
        max_retries=3,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )
    assert await fetcher.fetch(URL) == "page"
    assert len(calls) == 3
    # Every attempt counts against the budget
    assert fetcher.request_count == 3
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_all_attempts_fail(router, make_fetcher):
    router.default = (500, "boom")
    fetcher = make_fetcher(max_subrequests=10, max_retries=2)

    with pytest.raises(FetchError) as excinfo:
        await fetcher.fetch(URL)

    assert excinfo.value.status_code == 500
    assert fetcher.request_count == 2
    assert fetcher.fetch_failures == 1
    assert fetcher.fetch_attempts == 1
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_transport_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        raise httpx.ConnectError("refused", request=request)

    fetcher = BudgetedFetcher(
        max_subrequests=10,
        max_retries=2,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(httpx.ConnectError):
        await fetcher.fetch(URL)
    assert len(calls) == 2
    assert fetcher.fetch_failures == 1
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_budget_exceeded_is_not_retried(router, make_fetcher):
    router.default = (500, "boom")
    fetcher = make_fetcher(max_subrequests=1, max_retries=3)

    with pytest.raises(BudgetExceeded):
        await fetcher.fetch(URL)

    assert len(router.requests) == 1
    assert fetcher.request_count == 1
    # Budget refusals are not counted as fetch failures
    assert fetcher.fetch_failures == 0
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_restore_and_reset_request_count(router, make_fetcher):
    router.default = (200, "page")
    fetcher = make_fetcher(max_subrequests=3)
    fetcher.restore_request_count(2)

    await fetcher.fetch(URL)
    with pytest.raises(BudgetExceeded):
        await fetcher.fetch("https://theatre.test/other")
    assert len(router.requests) == 1

    fetcher.reset_request_count()
    assert fetcher.remaining_budget == 3
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_pacer_disabled_when_rate_zero():
    pacer = RequestPacer(0)
    assert await pacer.acquire(URL) == 0.0
    assert await pacer.acquire(URL) == 0.0


@pytest.mark.asyncio
async def test_pacer_spaces_same_host_only():
    pacer = RequestPacer(100, clock=lambda: 1000.0)

    assert await pacer.acquire("https://a.test/1") == 0.0
    assert await pacer.acquire("https://a.test/2") == pytest.approx(0.01)
    assert await pacer.acquire("https://b.test/1") == 0.0
