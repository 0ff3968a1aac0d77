"""Data models for scraped shows and crawl checkpoints."""
from datetime import datetime
from typing import Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field

from afisha_crawler.parse.hashing import calculate_content_hash, create_show_id


class Show(BaseModel):
    """One dated occurrence of a show listed on the afisha."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="sha256(url + occurrence)[:16]")
    title: str
    url: str = Field(..., description="Detail page URL")
    occurs_at: datetime = Field(..., alias="datetime")
    image_url: str = Field(default="", alias="imageUrl")
    ticket_url: str = Field(default="", alias="ticketUrl")
    sold_out: bool = Field(default=False, alias="soldOut")
    content_hash: str = Field(default="", alias="contentHash")

    @classmethod
    def build(
        cls,
        title: str,
        url: str,
        occurs_at: datetime,
        image_url: str = "",
        ticket_url: str = "",
        sold_out: bool = False,
    ) -> "Show":
        """Create a show with its id and content hash computed."""
        return cls(
            id=create_show_id(url, occurs_at),
            title=title,
            url=url,
            occurs_at=occurs_at,
            image_url=image_url,
            ticket_url=ticket_url,
            sold_out=sold_out,
            content_hash=calculate_content_hash(title, occurs_at, sold_out, ticket_url),
        )

    def refresh_content_hash(self) -> "Show":
        """Recompute the fingerprint after a field was changed in place."""
        self.content_hash = calculate_content_hash(
            self.title, self.occurs_at, self.sold_out, self.ticket_url
        )
        return self


class Job(BaseModel):
    """Scrape one afisha day."""

    url: str
    day: str = Field(..., description="YYYY-MM-DD")


class CrawlState(BaseModel):
    """Durable checkpoint of an in-progress crawl."""

    model_config = ConfigDict(populate_by_name=True)

    last_updated: int = Field(..., alias="lastUpdated", description="Epoch milliseconds")
    all_dates_to_scrape: list[str] = Field(default_factory=list, alias="allDatesToScrape")
    processed_dates: list[str] = Field(default_factory=list, alias="processedDates")
    pending_jobs: list[Job] = Field(default_factory=list, alias="pendingJobs")
    completed_shows: list[Show] = Field(default_factory=list, alias="completedShows")
    request_count: int = Field(default=0, alias="subrequestCount")

    def age_hours(self, now_ms: int) -> float:
        return (now_ms - self.last_updated) / (1000 * 60 * 60)

    def is_stale(self, now_ms: int, max_age_hours: float) -> bool:
        return self.age_hours(now_ms) > max_age_hours

    def unprocessed_dates(self) -> list[str]:
        processed = set(self.processed_dates)
        return [day for day in self.all_dates_to_scrape if day not in processed]

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(mode="json", by_alias=True)).decode()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CrawlState":
        return cls.model_validate(orjson.loads(raw))


class CrawlResult(BaseModel):
    """What one invocation of the crawler hands back to its caller."""

    shows: list[Show] = Field(default_factory=list)
    is_complete: bool = False
    request_count: int = 0
    processed_dates: list[str] = Field(default_factory=list)
    pending_jobs: list[Job] = Field(default_factory=list)
    fetch_attempts: int = 0
    fetch_failures: int = 0
    stop_reason: Optional[str] = None

    @property
    def total_failure(self) -> bool:
        """Every fetch attempted this invocation failed."""
        return self.fetch_attempts > 0 and self.fetch_failures >= self.fetch_attempts
