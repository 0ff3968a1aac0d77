"""HTTP client with a request budget, retries and a small page cache."""
import logging
from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from afisha_crawler.config import config
from afisha_crawler.fetch.rate_limit import RequestPacer

logger = logging.getLogger(__name__)


class BudgetExceeded(RuntimeError):
    """The per-invocation request ceiling has been reached."""

    def __init__(self, limit: int):
        super().__init__(f"Subrequest limit reached ({limit})")
        self.limit = limit


class FetchError(RuntimeError):
    """Non-2xx response."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"HTTP error {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class BudgetedFetcher:
    """
    Fetches pages while counting every network attempt against a budget.

    The counter and cache belong to the instance: create one fetcher per
    invocation and hand it to everything that needs the network.
    """

    def __init__(
        self,
        max_subrequests: int = config.MAX_SUBREQUESTS,
        max_retries: int = config.MAX_RETRIES,
        retry_delay: float = config.RETRY_DELAY,
        max_cache_entries: int = config.MAX_CACHE_ENTRIES,
        timeout: float = config.TIMEOUT,
        user_agent: str = config.USER_AGENT,
        rate_per_domain: float = config.RATE_PER_DOMAIN,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_subrequests = max_subrequests
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.max_cache_entries = max_cache_entries

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )
        self.pacer = RequestPacer(rate_per_domain)

        self.request_count = 0
        self.cache_hits = 0
        self.fetch_failures = 0
        self.fetch_successes = 0
        self._cache: dict[str, str] = {}

        # Retry policy depends on instance settings, so wrap per instance
        self._fetch_with_retry = retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type((FetchError, httpx.HTTPError)),
            before_sleep=self._log_retry,
            reraise=True,
        )(self._attempt)

    async def __aenter__(self) -> "BudgetedFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @property
    def budget_exhausted(self) -> bool:
        return self.request_count >= self.max_subrequests

    @property
    def remaining_budget(self) -> int:
        return max(0, self.max_subrequests - self.request_count)

    @property
    def fetch_attempts(self) -> int:
        """Network-backed fetch calls that finished (cache hits excluded)."""
        return self.fetch_successes + self.fetch_failures

    def restore_request_count(self, count: int) -> None:
        """Resume counting from a checkpoint."""
        self.request_count = max(0, count)

    def reset_request_count(self) -> None:
        self.request_count = 0

    def cached(self, url: str) -> Optional[str]:
        return self._cache.get(url)

    def _store(self, url: str, body: str) -> None:
        if len(self._cache) >= self.max_cache_entries:
            # Wholesale eviction; the cache only dedupes within one invocation
            self._cache.clear()
        if self.max_cache_entries > 0:
            self._cache[url] = body

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_retries} failed: {exc}, retrying"
        )

    async def _attempt(self, url: str) -> str:
        if self.request_count >= self.max_subrequests:
            raise BudgetExceeded(self.max_subrequests)
        self.request_count += 1

        await self.pacer.acquire(url)
        logger.debug(f"Fetching {url} (subrequest {self.request_count}/{self.max_subrequests})")
        response = await self.client.get(url)
        if not response.is_success:
            raise FetchError(url, response.status_code)
        return response.text

    async def fetch(self, url: str) -> str:
        """Return the page body, from cache when possible."""
        body = self._cache.get(url)
        if body is not None:
            self.cache_hits += 1
            logger.debug(f"Using cached response for {url}")
            return body

        try:
            body = await self._fetch_with_retry(url)
        except BudgetExceeded:
            raise
        except (FetchError, httpx.HTTPError) as e:
            self.fetch_failures += 1
            logger.error(f"All {self.max_retries} attempts failed for {url}: {e}")
            raise

        self.fetch_successes += 1
        self._store(url, body)
        return body
