"""Date helpers for afisha URLs and listing time fields."""
import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

DAY_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")

# Genitive month names as printed on the afisha ("12 червня")
UKRAINIAN_MONTHS: dict[str, int] = {
    "січня": 1,
    "лютого": 2,
    "березня": 3,
    "квітня": 4,
    "травня": 5,
    "червня": 6,
    "липня": 7,
    "серпня": 8,
    "вересня": 9,
    "жовтня": 10,
    "листопада": 11,
    "грудня": 12,
}


def current_date_string(today: date | None = None) -> str:
    """Today as YYYY-MM-DD (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    return today.isoformat()


def get_day_from_url(url: str, today: date | None = None) -> str:
    """Pull YYYY-MM-DD out of a URL, falling back to today."""
    match = DAY_PATTERN.search(url or "")
    return match.group(0) if match else current_date_string(today)


def _to_int(text: str, default: int = 0) -> int:
    try:
        return int(text.strip())
    except (ValueError, AttributeError):
        return default


def build_occurrence(
    day_text: str,
    month_weekday_text: str,
    time_text: str,
    job_day: str,
    tz_name: str = "Europe/Kyiv",
) -> datetime:
    """
    Combine listing fields into an aware UTC datetime.

    day_text is "12", month_weekday_text is "червня, середа", time_text is
    "18:00". The year comes from job_day. Unknown month names map to
    January; an impossible day falls back to midnight of job_day.
    """
    tz = ZoneInfo(tz_name)
    month_name = (month_weekday_text or "").split(",")[0].strip().lower()
    month = UKRAINIAN_MONTHS.get(month_name, 1)

    time_parts = (time_text or "").split(":")
    hours = _to_int(time_parts[0]) if time_parts else 0
    minutes = _to_int(time_parts[1]) if len(time_parts) > 1 else 0

    year = _to_int(job_day[:4], default=datetime.now(timezone.utc).year)
    try:
        local = datetime(year, month, _to_int(day_text), hours, minutes, tzinfo=tz)
    except ValueError:
        fallback = _parse_day(job_day)
        local = datetime(fallback.year, fallback.month, fallback.day, tzinfo=tz)
    return local.astimezone(timezone.utc)


def _parse_day(day: str) -> date:
    try:
        return date.fromisoformat(day)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc).date()
