from datetime import datetime, timezone


def get_utc_now() -> datetime:
    """Returns the current timezone-aware datetime in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC.

    Some backends (SQLite) hand timezone-aware columns back without tzinfo;
    everything this app stores is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
