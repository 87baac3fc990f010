"""Shared helpers for the ingestion services."""

from datetime import UTC, datetime
from typing import Any


def format_file_size(size_bytes: int) -> str:
    """Format a byte count as a human-readable string, e.g. "1.5 MB"."""
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_bool(value: Any, default: bool = False) -> bool:
    """Interpret a form/query/JSON value as a boolean.

    Args:
        value: Raw value ("true", "1", "no", True, None, ...)
        default: Returned when value is None or empty

    Returns:
        The parsed boolean
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
