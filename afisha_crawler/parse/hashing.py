"""Deterministic identifiers and change fingerprints for shows."""
import hashlib
from datetime import datetime, timezone
from urllib.parse import urlsplit

import orjson

SHOW_ID_LENGTH = 16
CONTENT_HASH_LENGTH = 10


def iso_utc(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_show_id(url: str, occurs_at: datetime | str) -> str:
    """Stable id for one occurrence of a show."""
    stamp = iso_utc(occurs_at) if isinstance(occurs_at, datetime) else occurs_at
    return hashlib.sha256(f"{url}_{stamp}".encode("utf-8")).hexdigest()[:SHOW_ID_LENGTH]


def calculate_content_hash(
    title: str,
    occurs_at: datetime,
    sold_out: bool,
    ticket_url: str,
) -> str:
    """Fingerprint of the fields that matter for change detection (never the id)."""
    payload = {
        "title": title,
        "datetime": iso_utc(occurs_at),
        "soldOut": sold_out,
        "ticketUrl": ticket_url,
    }
    return hashlib.sha256(orjson.dumps(payload)).hexdigest()[:CONTENT_HASH_LENGTH]


def strip_query_params(url: str) -> str:
    """Drop query string and fragment so image URLs deduplicate."""
    if not url:
        return url
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        # Relative or garbage: keep whatever precedes the query
        return url.split("?", 1)[0].split("#", 1)[0]
    return f"{parts.scheme}://{parts.netloc}{parts.path}"
