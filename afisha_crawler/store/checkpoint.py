"""Crawl checkpoint and seen-id index on top of a key/value backend.

Nothing here raises to the caller. A lost or unreadable checkpoint costs a
re-scrape, never a crashed crawl.
"""
import logging
import time
from typing import Callable, Iterable, Optional

from afisha_crawler.config import config
from afisha_crawler.parse.models import CrawlState
from afisha_crawler.store.kv import KeyValueBackend

logger = logging.getLogger(__name__)

STATE_KEY = "scraper:state"
SHOW_KEY_PREFIX = "show:"
SHOW_COUNT_KEY = "shows:count"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CheckpointStore:
    """Durable crawl progress plus the set of show ids already delivered."""

    def __init__(
        self,
        backend: KeyValueBackend,
        ttl_seconds: int = config.STATE_TTL_SECONDS,
        max_age_hours: float = config.STATE_MAX_AGE_HOURS,
        now_ms: Callable[[], int] = _now_ms,
    ):
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.max_age_hours = max_age_hours
        self.seen_ttl_seconds = int(max_age_hours * 3600)
        self._now_ms = now_ms

    async def save(self, state: CrawlState) -> bool:
        """Persist state. Returns False (and logs) on failure."""
        try:
            await self.backend.put(STATE_KEY, state.to_json(), ttl=self.ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to save scraper state: {e}", exc_info=True)
            return False
        logger.debug(
            f"Saved state with {len(state.pending_jobs)} pending jobs and "
            f"{len(state.completed_shows)} completed shows"
        )
        return True

    async def load(self) -> Optional[CrawlState]:
        """Fresh state, or None when absent, malformed or stale."""
        try:
            raw = await self.backend.get(STATE_KEY)
        except Exception as e:
            logger.error(f"Failed to load scraper state: {e}", exc_info=True)
            return None

        if not raw:
            logger.info("No saved state found")
            return None

        try:
            state = CrawlState.from_json(raw)
        except Exception as e:
            logger.warning(f"Discarding malformed scraper state: {e}")
            return None

        now = self._now_ms()
        if state.is_stale(now, self.max_age_hours):
            logger.warning(
                f"Found state but it's too old ({state.age_hours(now):.1f} hours), ignoring"
            )
            return None

        logger.info(
            f"Loaded state with {len(state.pending_jobs)} pending jobs, "
            f"{len(state.processed_dates)}/{len(state.all_dates_to_scrape)} processed dates and "
            f"{len(state.completed_shows)} completed shows"
        )
        return state

    async def clear(self) -> None:
        try:
            await self.backend.delete(STATE_KEY)
        except Exception as e:
            logger.error(f"Failed to clear scraper state: {e}", exc_info=True)

    # Seen-id index: show:<id> -> content hash at the time it was delivered

    async def seen_fingerprint(self, show_id: str) -> Optional[str]:
        try:
            return await self.backend.get(f"{SHOW_KEY_PREFIX}{show_id}")
        except Exception as e:
            logger.error(f"Failed to check seen id {show_id}: {e}")
            return None

    async def has_seen(self, show_id: str) -> bool:
        return await self.seen_fingerprint(show_id) is not None

    async def all_seen(self, show_ids: Iterable[str]) -> bool:
        """True when every id is already in the index (vacuously for none)."""
        for show_id in show_ids:
            if not await self.has_seen(show_id):
                return False
        return True

    async def mark_seen(self, show_id: str, content_hash: str = "") -> None:
        await self.mark_seen_many([(show_id, content_hash)])

    async def mark_seen_many(self, entries: Iterable[tuple[str, str]]) -> int:
        """Add (id, content_hash) pairs to the index; returns how many ids were new."""
        added = 0
        try:
            for show_id, content_hash in entries:
                key = f"{SHOW_KEY_PREFIX}{show_id}"
                if await self.backend.get(key) is None:
                    added += 1
                await self.backend.put(key, content_hash or "1", ttl=self.seen_ttl_seconds)
            if added:
                count = await self.seen_count()
                await self.backend.put(SHOW_COUNT_KEY, str(count + added), ttl=self.seen_ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to update seen ids: {e}", exc_info=True)
        return added

    async def seen_count(self) -> int:
        try:
            raw = await self.backend.get(SHOW_COUNT_KEY)
            return int(raw) if raw else 0
        except (ValueError, TypeError):
            return 0
        except Exception as e:
            logger.error(f"Failed to read seen count: {e}")
            return 0

    async def clear_seen(self) -> None:
        """Drop the index once the catalog is authoritative again."""
        try:
            delete_prefix = getattr(self.backend, "delete_prefix", None)
            if delete_prefix is not None:
                removed = await delete_prefix(SHOW_KEY_PREFIX)
                logger.debug(f"Removed {removed} seen ids")
            await self.backend.delete(SHOW_COUNT_KEY)
        except Exception as e:
            logger.error(f"Failed to clear seen ids: {e}", exc_info=True)
