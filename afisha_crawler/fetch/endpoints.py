"""URL builders for the afisha site."""
from urllib.parse import urljoin

from afisha_crawler.config import config


def afisha_url(day: str, base_url: str | None = None) -> str:
    """Calendar/day page for YYYY-MM-DD."""
    base = (base_url or config.BASE_URL).rstrip("/")
    return f"{base}/afisha/{day}"


def absolute_url(href: str, base_url: str | None = None) -> str:
    """Resolve a site-relative link."""
    if href.startswith("http"):
        return href
    return urljoin((base_url or config.BASE_URL).rstrip("/") + "/", href.lstrip("/"))
