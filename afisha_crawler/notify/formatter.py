"""Render a show as a chat message."""
from zoneinfo import ZoneInfo

from afisha_crawler.config import config
from afisha_crawler.parse.models import Show

SOLD_OUT_SUFFIX = "(Розпродано)"


def format_show(show: Show, tz_name: str = config.SOURCE_TIMEZONE) -> str:
    """Markdown text: bold title, then the local date and time."""
    local = show.occurs_at.astimezone(ZoneInfo(tz_name))
    when = local.strftime("%d.%m.%Y, %H:%M")
    if show.sold_out:
        when = f"{when} {SOLD_OUT_SUFFIX}"
    return f"*{show.title}*\n\nДата: {when}"
