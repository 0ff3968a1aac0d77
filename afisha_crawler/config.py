"""Configuration management from environment variables."""
import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
STATE_DB = DATA_DIR / "state.db"
STATE_FILES_DIR = DATA_DIR / "kv"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration."""

    # Source
    BASE_URL: str = os.getenv("BASE_URL", "https://molodyytheatre.com")
    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    )
    SOURCE_TIMEZONE: str = os.getenv("SOURCE_TIMEZONE", "Europe/Kyiv")

    # Fetcher
    TIMEOUT: int = int(os.getenv("TIMEOUT", "20"))
    MAX_SUBREQUESTS: int = int(os.getenv("MAX_SUBREQUESTS", "50"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "1"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "0.1"))
    RATE_PER_DOMAIN: float = float(os.getenv("RATE_PER_DOMAIN", "0"))
    MAX_CACHE_ENTRIES: int = int(os.getenv("MAX_CACHE_ENTRIES", "5"))

    # Crawl budgets
    MAX_CONCURRENT_JOBS: int = int(os.getenv("MAX_CONCURRENT_JOBS", "1"))
    MAX_WALL_SECONDS: float = float(os.getenv("MAX_WALL_SECONDS", "25"))
    DEADLINE_FRACTION: float = float(os.getenv("DEADLINE_FRACTION", "0.8"))
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1"))
    MAX_DISCOVERED_DATES: int = int(os.getenv("MAX_DISCOVERED_DATES", "10"))
    MINIMAL_HTML_PARSING: bool = _env_bool("MINIMAL_HTML_PARSING")

    # Checkpoint
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "sqlite")
    STATE_MAX_AGE_HOURS: float = float(os.getenv("STATE_MAX_AGE_HOURS", "4"))
    STATE_TTL_SECONDS: int = int(os.getenv("STATE_TTL_SECONDS", "86400"))

    # Catalog (Supabase)
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: str | None = os.getenv("SUPABASE_KEY")
    SUPABASE_TABLE: str = os.getenv("SUPABASE_TABLE", "shows")
    SUPABASE_SUBSCRIPTIONS_TABLE: str = os.getenv("SUPABASE_SUBSCRIPTIONS_TABLE", "subscriptions")

    # Notifications
    TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls, require_catalog: bool = True) -> None:
        """Validate required configuration."""
        errors = []
        if require_catalog:
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_KEY:
                errors.append("SUPABASE_KEY is required")
        if cls.STORAGE_BACKEND not in ("sqlite", "file", "memory"):
            errors.append(f"STORAGE_BACKEND must be sqlite, file or memory (got {cls.STORAGE_BACKEND!r})")
        if cls.MAX_SUBREQUESTS < 1:
            errors.append("MAX_SUBREQUESTS must be at least 1")
        if cls.MAX_CONCURRENT_JOBS < 1:
            errors.append("MAX_CONCURRENT_JOBS must be at least 1")
        if cls.CHUNK_SIZE < 1:
            errors.append("CHUNK_SIZE must be at least 1")
        if not 0 < cls.DEADLINE_FRACTION <= 1:
            errors.append("DEADLINE_FRACTION must be in (0, 1]")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()


@dataclass
class CrawlSettings:
    """Budgets for a single crawl invocation."""

    base_url: str = Config.BASE_URL
    max_subrequests: int = Config.MAX_SUBREQUESTS
    max_concurrent_jobs: int = Config.MAX_CONCURRENT_JOBS
    max_wall_seconds: float = Config.MAX_WALL_SECONDS
    deadline_fraction: float = Config.DEADLINE_FRACTION
    chunk_size: int = Config.CHUNK_SIZE
    max_discovered_dates: int = Config.MAX_DISCOVERED_DATES
    minimal_parsing: bool = Config.MINIMAL_HTML_PARSING
    source_timezone: str = Config.SOURCE_TIMEZONE

    @classmethod
    def from_config(cls, cfg: Config = config) -> "CrawlSettings":
        """Snapshot the current configuration (after CLI overrides)."""
        return cls(
            base_url=cfg.BASE_URL,
            max_subrequests=cfg.MAX_SUBREQUESTS,
            max_concurrent_jobs=cfg.MAX_CONCURRENT_JOBS,
            max_wall_seconds=cfg.MAX_WALL_SECONDS,
            deadline_fraction=cfg.DEADLINE_FRACTION,
            chunk_size=cfg.CHUNK_SIZE,
            max_discovered_dates=cfg.MAX_DISCOVERED_DATES,
            minimal_parsing=cfg.MINIMAL_HTML_PARSING,
            source_timezone=cfg.SOURCE_TIMEZONE,
        )
