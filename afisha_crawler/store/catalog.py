"""Show catalog: Supabase in production, in-memory for dry runs and tests."""
import asyncio
import logging
from typing import Iterable, Protocol

from supabase import Client, create_client
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from afisha_crawler.config import config
from afisha_crawler.parse.models import Show

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    async def fetch_fingerprints(self, show_ids: list[str]) -> dict[str, str]: ...

    async def insert(self, shows: list[Show]) -> None: ...

    async def update(self, show: Show) -> None: ...

    async def find_subscribers(self, show_url: str) -> list[int]: ...


def show_to_row(show: Show) -> dict:
    """Row as stored in the shows table (camelCase columns)."""
    return show.model_dump(mode="json", by_alias=True)


class SupabaseCatalog:
    """Reads and upserts shows by id (runs the sync client in a thread pool)."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        table: str = config.SUPABASE_TABLE,
        subscriptions_table: str = config.SUPABASE_SUBSCRIPTIONS_TABLE,
    ):
        url = url or config.SUPABASE_URL
        key = key or config.SUPABASE_KEY
        if not url or not key:
            raise ValueError("Supabase configuration missing")
        self.client: Client = create_client(url, key)
        self.table = table
        self.subscriptions_table = subscriptions_table

    async def _run(self, func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, func, *args)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    def _select_fingerprints_sync(self, show_ids: list[str]) -> list[dict]:
        response = (
            self.client.table(self.table)
            .select("id, contentHash")
            .in_("id", show_ids)
            .execute()
        )
        return response.data or []

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    def _upsert_sync(self, rows: list[dict]) -> None:
        self.client.table(self.table).upsert(rows, on_conflict="id").execute()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    def _update_sync(self, show_id: str, row: dict) -> None:
        self.client.table(self.table).update(row).eq("id", show_id).execute()

    def _subscribers_sync(self, show_url: str) -> list[dict]:
        response = (
            self.client.table(self.subscriptions_table)
            .select("chat_id")
            .eq("show_url", show_url)
            .execute()
        )
        return response.data or []

    async def fetch_fingerprints(self, show_ids: list[str]) -> dict[str, str]:
        if not show_ids:
            return {}
        rows = await self._run(self._select_fingerprints_sync, show_ids)
        return {row["id"]: row.get("contentHash") or "" for row in rows}

    async def insert(self, shows: list[Show]) -> None:
        if not shows:
            return
        await self._run(self._upsert_sync, [show_to_row(show) for show in shows])
        logger.info(f"Upserted {len(shows)} shows to Supabase")

    async def update(self, show: Show) -> None:
        await self._run(self._update_sync, show.id, show_to_row(show))

    async def find_subscribers(self, show_url: str) -> list[int]:
        rows = await self._run(self._subscribers_sync, show_url)
        return [row["chat_id"] for row in rows if row.get("chat_id") is not None]


class MemoryCatalog:
    """Dict-backed catalog."""

    def __init__(self, subscriptions: dict[str, list[int]] | None = None):
        self.rows: dict[str, Show] = {}
        self.subscriptions = subscriptions or {}
        self.writes = 0

    async def fetch_fingerprints(self, show_ids: list[str]) -> dict[str, str]:
        return {sid: self.rows[sid].content_hash for sid in show_ids if sid in self.rows}

    async def insert(self, shows: list[Show]) -> None:
        for show in shows:
            self.rows[show.id] = show
        self.writes += len(shows)

    async def update(self, show: Show) -> None:
        self.rows[show.id] = show
        self.writes += 1

    async def find_subscribers(self, show_url: str) -> list[int]:
        return list(self.subscriptions.get(show_url, []))

    def seed(self, shows: Iterable[Show]) -> None:
        for show in shows:
            self.rows[show.id] = show
