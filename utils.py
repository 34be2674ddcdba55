from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from models.records import to_utc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string, unix seconds, or datetime into an aware UTC datetime.

    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return parse_timestamp(int(text))
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _parse_since(value: Optional[str]) -> Optional[datetime]:
    """Parse a CLI time argument; raises ValueError when it is not a valid timestamp."""
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp '{value}', expected ISO-8601")
    return parsed


def default_window(
    start: Optional[datetime], end: Optional[datetime], days: int = 30
) -> tuple[datetime, datetime]:
    """Resolve an optional report window: end defaults to now, start to end - days."""
    resolved_end = to_utc(end) if end is not None else utc_now()
    resolved_start = (
        to_utc(start) if start is not None else resolved_end - timedelta(days=days)
    )
    return resolved_start, resolved_end
