"""Publish crawl results: diff against the catalog, write, notify."""
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol

from afisha_crawler.notify.formatter import format_show
from afisha_crawler.parse.models import Show
from afisha_crawler.store.catalog import Catalog

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(
        self,
        chat_id: int,
        text: str,
        image_url: Optional[str] = None,
        ticket_url: Optional[str] = None,
    ) -> None: ...


@dataclass
class PublishReport:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    notified: int = 0
    notify_failures: int = 0
    write_failures: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


async def _notify(
    show: Show,
    catalog: Catalog,
    notifier: Notifier,
    formatter: Callable[[Show], str],
    report: PublishReport,
) -> None:
    try:
        recipients = await catalog.find_subscribers(show.url)
    except Exception as e:
        logger.error(f"Failed to load subscribers for {show.url}: {e}")
        report.notify_failures += 1
        return

    text = formatter(show)
    for chat_id in recipients:
        try:
            await notifier.send(
                chat_id,
                text,
                image_url=show.image_url or None,
                ticket_url=show.ticket_url or None,
            )
            report.notified += 1
        except Exception as e:
            logger.error(f"Failed to notify {chat_id} about {show.id}: {e}")
            report.notify_failures += 1


async def publish(
    shows: list[Show],
    catalog: Catalog,
    notifier: Optional[Notifier] = None,
    formatter: Callable[[Show], str] = format_show,
) -> PublishReport:
    """
    Upsert shows into the catalog by id.

    New ids are inserted and their subscribers notified; known ids with a
    different content hash are updated silently; identical ones are left
    alone.
    """
    report = PublishReport()
    if not shows:
        return report

    # Last occurrence of an id wins
    by_id = {show.id: show for show in shows}
    try:
        known = await catalog.fetch_fingerprints(list(by_id))
    except Exception as e:
        logger.error(f"Failed to read catalog fingerprints: {e}", exc_info=True)
        report.write_failures = len(by_id)
        return report

    for show in by_id.values():
        if show.id not in known:
            try:
                await catalog.insert([show])
            except Exception as e:
                logger.error(f"Failed to insert show {show.id}: {e}")
                report.write_failures += 1
                continue
            report.inserted += 1
            if notifier is not None:
                await _notify(show, catalog, notifier, formatter, report)
        elif known[show.id] != show.content_hash:
            try:
                await catalog.update(show)
            except Exception as e:
                logger.error(f"Failed to update show {show.id}: {e}")
                report.write_failures += 1
                continue
            report.updated += 1
        else:
            report.unchanged += 1

    logger.info(
        f"Published {len(by_id)} shows: {report.inserted} new, {report.updated} updated, "
        f"{report.unchanged} unchanged, {report.notified} notifications sent"
    )
    return report
