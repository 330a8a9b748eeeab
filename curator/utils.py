"""Utility functions for the curation core."""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import urlsplit

from .logging import get_logger

logger = get_logger(__name__)


def extract_domain(url: str) -> str:
    """Extract the lowercase host from a URL.

    Args:
        url: URL string

    Returns:
        Host name without port or userinfo, empty when absent
    """
    try:
        return (urlsplit(url).hostname or "").rstrip(".")
    except ValueError:
        return ""


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_date_string(date_str: str) -> datetime | None:
    """Parse various date string formats.

    Args:
        date_str: Date string to parse

    Returns:
        Parsed UTC datetime or None if parsing fails
    """
    if not date_str:
        return None

    date_str = date_str.strip()

    # RFC 2822 first (common in RSS feeds)
    try:
        return ensure_utc(parsedate_to_datetime(date_str))
    except (ValueError, TypeError, IndexError):
        pass

    try:
        return ensure_utc(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
    except ValueError:
        pass

    formats = [
        "%Y-%m-%d %H:%M:%S",
        "%d/%m/%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
        "%d %b %Y",
    ]

    for fmt in formats:
        try:
            return ensure_utc(datetime.strptime(date_str, fmt))
        except ValueError:
            continue

    logger.warning("date_parse_failed", date_string=date_str)
    return None


def format_datetime_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
