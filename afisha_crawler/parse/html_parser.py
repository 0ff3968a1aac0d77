"""Parse afisha day pages into shows."""
import html as html_lib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from afisha_crawler.parse.dates import build_occurrence
from afisha_crawler.parse.document import SourceDocument
from afisha_crawler.parse.hashing import create_show_id, strip_query_params
from afisha_crawler.parse.models import Show

logger = logging.getLogger(__name__)

# Apology banner shown instead of the listing view
NO_EVENTS_TEXT = "Вибачте, наразі немає подій"
# Every listing card carries this class
LISTING_MARKER = "event-card"
SOLD_OUT_LABEL = "квитки продано"

_ROW_SPLIT = re.compile(r'class="views-row\b')
_TITLE_FIELD = "views-field-field-event-title"
_TITLE_LINK = re.compile(
    r'views-field-field-event-title.*?<a\b[^>]*?href="([^"]*)"[^>]*>(.*?)</a>',
    re.DOTALL,
)
_TAG = re.compile(r"<[^>]+>")
_SPAN = {
    key: re.compile(rf'class="{key}"[^>]*>([^<]*)<')
    for key in ("t1", "t2", "t3")
}


def may_have_events(html_content: str | None) -> tuple[bool, dict[str, Any]]:
    """
    Cheap substring gate run before any parsing.
    Returns (bool, reason_dict) where reason_dict carries a reason code.
    """
    if not html_content:
        return False, {"gate_reason": "empty_html"}
    if NO_EVENTS_TEXT in html_content:
        return False, {"gate_reason": "no_events_banner"}
    if LISTING_MARKER not in html_content:
        return False, {"gate_reason": "missing_listing_marker"}
    return True, {"gate_reason": "listing_marker_found"}


def is_sold_out(label: str) -> bool:
    return label.strip().lower() == SOLD_OUT_LABEL


def scan_candidate_ids(
    html_content: str | None,
    day: str,
    tz_name: str = "Europe/Kyiv",
) -> Optional[list[str]]:
    """
    Compute show ids with regular expressions only, no DOM.

    Returns None when the page can't be scanned unambiguously; callers then
    fall back to full extraction.
    """
    passed, _ = may_have_events(html_content)
    if not passed:
        return []

    chunks = _ROW_SPLIT.split(html_content)[1:]
    if len(chunks) != html_content.count(_TITLE_FIELD):
        return None

    ids = []
    for chunk in chunks:
        link = _TITLE_LINK.search(chunk)
        if not link:
            continue
        url = html_lib.unescape(link.group(1)).strip()
        title = html_lib.unescape(_TAG.sub("", link.group(2))).strip()
        if not url or not title:
            continue
        parts = {}
        for key, pattern in _SPAN.items():
            found = pattern.search(chunk)
            parts[key] = html_lib.unescape(found.group(1)).strip() if found else ""
        occurs_at = build_occurrence(parts["t1"], parts["t2"], parts["t3"], day, tz_name)
        ids.append(create_show_id(url, occurs_at))
    return ids


def parse_shows(
    document: SourceDocument,
    day: str,
    minimal: bool = False,
    tz_name: str = "Europe/Kyiv",
    now: datetime | None = None,
) -> list[Show]:
    """Walk listing nodes; listings without title or URL are dropped."""
    shows = []
    for listing in document.find_listings():
        if not listing.title or not listing.url:
            logger.debug(f"Skipping listing without title/url on {day}")
            continue

        if minimal:
            occurs_at = now or datetime.now(timezone.utc)
        else:
            occurs_at = build_occurrence(
                listing.day_text,
                listing.month_text,
                listing.time_text,
                day,
                tz_name,
            )

        shows.append(
            Show.build(
                title=listing.title,
                url=listing.url,
                occurs_at=occurs_at,
                image_url=strip_query_params(listing.image_src),
                ticket_url=listing.ticket_href,
                sold_out=is_sold_out(listing.label),
            )
        )
    return shows


def extract_shows(
    html_content: str | None,
    day: str,
    minimal: bool = False,
    tz_name: str = "Europe/Kyiv",
    now: datetime | None = None,
) -> list[Show]:
    """Extract shows from a day page. Pure function of (html, day)."""
    passed, reason = may_have_events(html_content)
    if not passed:
        logger.debug(f"No events for {day} (quick check: {reason['gate_reason']})")
        return []

    document = SourceDocument(html_content)
    if document.has_no_events_marker():
        logger.debug(f"No events for {day}")
        return []

    shows = parse_shows(document, day, minimal=minimal, tz_name=tz_name, now=now)
    logger.debug(f"Found {len(shows)} shows for {day}")
    return shows
