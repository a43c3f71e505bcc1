"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Return a timezone-aware UTC ``datetime``."""

    return datetime.now(timezone.utc)


def require_utc(value: datetime | None, *, field_name: str = "timestamp") -> datetime | None:
    """Ensure ``value`` includes timezone info and return a UTC-normalized copy.

    Args:
        value: The datetime to validate.
        field_name: Human-readable name used in validation errors.

    Returns:
        A timezone-aware datetime normalized to UTC, or ``None`` if ``value`` is
        ``None``.

    Raises:
        ValueError: If ``value`` is timezone-naive.
    """

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{field_name} must include a timezone offset")

    return value.astimezone(timezone.utc)


def coerce_utc(value: datetime | None) -> datetime | None:
    """Return a UTC-normalized datetime, assuming naive values are already UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns, so every comparison against ``utcnow()`` goes through here.
    """

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def parse_legacy_date(value: object) -> datetime | None:
    """Parse the loosely typed ``date`` field found on legacy match rows."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return coerce_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds, as exported from the legacy client.
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return coerce_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def season_for(value: datetime | None) -> int:
    """Return the statistics season (calendar year) for a match date.

    Matches without a usable date fall into the current season.
    """

    if value is None:
        return utcnow().year
    return value.year
