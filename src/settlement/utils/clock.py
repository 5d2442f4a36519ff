from datetime import UTC, datetime


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; convert aware ones to UTC.

    SQL providers hand datetimes back without tzinfo.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
