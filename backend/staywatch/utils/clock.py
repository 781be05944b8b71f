from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back from DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
