"""Find afisha days that have events."""
import logging
from datetime import date

import httpx

from afisha_crawler.config import config
from afisha_crawler.fetch.client import BudgetedFetcher, BudgetExceeded, FetchError
from afisha_crawler.fetch.endpoints import absolute_url, afisha_url
from afisha_crawler.parse.dates import get_day_from_url
from afisha_crawler.parse.document import SourceDocument

logger = logging.getLogger(__name__)


class DateDiscoverer:
    """
    Reads the calendar strip of one afisha page.

    Only the month shown on that page is considered; later months are picked
    up by later invocations.
    """

    def __init__(
        self,
        fetcher: BudgetedFetcher,
        base_url: str = config.BASE_URL,
        max_dates: int = config.MAX_DISCOVERED_DATES,
    ):
        self.fetcher = fetcher
        self.base_url = base_url
        self.max_dates = max_dates

    def dates_from_html(self, html_content: str, today: date | None = None) -> list[str]:
        """Candidate days from calendar markup, sorted and de-duplicated."""
        days: list[str] = []
        for entry in SourceDocument(html_content).find_calendar_entries():
            if len(days) >= self.max_dates:
                break
            if not entry.href:
                continue
            days.append(get_day_from_url(absolute_url(entry.href, self.base_url), today))
        return sorted(set(days))

    async def discover(self, start_date: str, today: date | None = None) -> list[str]:
        """Days with events starting from start_date. BudgetExceeded propagates."""
        url = afisha_url(start_date, self.base_url)
        logger.debug(f"Checking calendar at {url}")
        try:
            html_content = await self.fetcher.fetch(url)
        except BudgetExceeded:
            raise
        except (FetchError, httpx.HTTPError) as e:
            logger.error(f"Error finding dates with events: {e}")
            return []

        days = self.dates_from_html(html_content, today)
        logger.info(f"Found {len(days)} dates with events from {start_date}")
        return days
