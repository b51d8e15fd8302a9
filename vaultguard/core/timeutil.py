"""
Naive UTC timestamps: every datetime column stores UTC without tzinfo.

Models declare those columns with `sa_type=DateTime` so the storage type stays
plain `DateTime(timezone=False)` whatever the SQLModel default for `datetime` is.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
