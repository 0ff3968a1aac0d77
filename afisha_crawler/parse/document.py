"""Queryable view over an afisha HTML page.

Every selector that depends on the source markup lives here, so markup
drift only has to be fixed in one place. Callers see plain dataclasses.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from selectolax.parser import HTMLParser, Node

logger = logging.getLogger(__name__)

# Calendar index
CALENDAR_ENTRY_SELECTOR = "#afisha-date-list > li.future"

# Day page
EMPTY_VIEW_SELECTOR = "#block-system-main .view-empty p"
LISTING_SELECTOR = ".views-row"
TITLE_LINK_SELECTOR = ".views-field-field-event-title .field-content a"
IMAGE_SELECTOR = ".views-field-field-images img"
TICKET_LINK_SELECTOR = ".views-field-nothing a"
LABEL_SELECTOR = ".views-field-field-label .field-content"
TIME_SELECTOR = ".views-field-field-time .field-content"

# Text the site prints when a day has nothing on
EMPTY_VIEW_TEXT = "На обрану дату немає заходів."


@dataclass
class Listing:
    """Raw fields of one listing node, before normalization."""

    title: str = ""
    url: str = ""
    image_src: str = ""
    ticket_href: str = ""
    label: str = ""
    day_text: str = ""
    month_text: str = ""
    time_text: str = ""


@dataclass
class CalendarEntry:
    """One future day in the calendar strip."""

    href: Optional[str] = None


def _text(node: Node | None, selector: str) -> str:
    if node is None:
        return ""
    found = node.css_first(selector)
    return found.text(strip=True) if found else ""


def _attr(node: Node | None, selector: str, name: str) -> str:
    if node is None:
        return ""
    found = node.css_first(selector)
    if found is None:
        return ""
    return (found.attributes.get(name) or "").strip()


class SourceDocument:
    """Lazy DOM wrapper; the tree is only built when a query needs it."""

    def __init__(self, html: str | None):
        self.html = html or ""
        self._tree: HTMLParser | None = None

    @property
    def tree(self) -> HTMLParser:
        if self._tree is None:
            self._tree = HTMLParser(self.html)
        return self._tree

    def has_no_events_marker(self) -> bool:
        """True when the page renders the empty-day block."""
        if not self.html:
            return True
        node = self.tree.css_first(EMPTY_VIEW_SELECTOR)
        return node is not None and node.text(strip=True) == EMPTY_VIEW_TEXT

    def find_listings(self) -> list[Listing]:
        listings = []
        for row in self.tree.css(LISTING_SELECTOR):
            time_node = row.css_first(TIME_SELECTOR)
            listings.append(
                Listing(
                    title=_text(row, TITLE_LINK_SELECTOR),
                    url=_attr(row, TITLE_LINK_SELECTOR, "href"),
                    image_src=_attr(row, IMAGE_SELECTOR, "src"),
                    ticket_href=_attr(row, TICKET_LINK_SELECTOR, "href"),
                    label=_text(row, LABEL_SELECTOR),
                    day_text=_text(time_node, ".t1"),
                    month_text=_text(time_node, ".t2"),
                    time_text=_text(time_node, ".t3"),
                )
            )
        return listings

    def find_calendar_entries(self) -> list[CalendarEntry]:
        entries = []
        for item in self.tree.css(CALENDAR_ENTRY_SELECTOR):
            link = item.css_first("a")
            if link is None:
                continue
            entries.append(CalendarEntry(href=link.attributes.get("href")))
        return entries
