from datetime import datetime, timezone


def NowUtc() -> datetime:
    return datetime.now(tz=timezone.utc)


def AsUtc(value: datetime) -> datetime:
    # SQLite hands back naive values for timezone-aware columns; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
