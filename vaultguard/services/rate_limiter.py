"""
Fixed-window request counters.

Windows are aligned to multiples of `window_minutes` since the epoch so every call in
the same interval hits the same row. The counter is bumped by a single conditional
upsert; concurrent callers can never both be admitted past the limit.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session

from vaultguard.core.timeutil import as_naive_utc, utcnow
from vaultguard.models import IdentifierType, RateLimitWindow, ThreatSeverity, ThreatType
from vaultguard.services.threat_config import RateLimitConfig
from vaultguard.services.threat_recorder import ThreatFinding, threat_recorder

log = logging.getLogger("vaultguard.threat.rate_limit")

_EPOCH = datetime(1970, 1, 1)
_INLINE_PURGE_INTERVAL = 60.0  # seconds between opportunistic purges per process
_last_inline_purge = 0.0


@dataclass(frozen=True)
class RateLimitResult:
    exceeded: bool
    remaining: int
    reset_at: datetime


def window_bounds(now: datetime, window_minutes: int) -> tuple[datetime, datetime]:
    size = window_minutes * 60
    elapsed = int((now - _EPOCH).total_seconds())
    start = _EPOCH + timedelta(seconds=elapsed - elapsed % size)
    return start, start + timedelta(seconds=size)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"rate limiter needs ON CONFLICT support, unsupported dialect: {dialect}")


def _increment(
    db: Session,
    identifier: str,
    identifier_type: IdentifierType,
    action: str,
    window_start: datetime,
    window_end: datetime,
    max_requests: int,
    company_id: str | None,
    now: datetime,
) -> int | None:
    """Creates the row with count=1 or bumps it while count < max. None when the limit is reached."""
    table = RateLimitWindow.__table__
    insert = _insert_for(db)
    stmt = insert(table).values(
        identifier=identifier,
        identifier_type=identifier_type.value,
        action=action,
        window_start=window_start,
        window_end=window_end,
        count=1,
        company_id=company_id,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["identifier", "identifier_type", "action", "window_start"],
        set_={"count": table.c.count + 1, "updated_at": now},
        where=table.c.count < max_requests,
    ).returning(table.c.count)
    row = db.connection().execute(stmt).first()
    db.commit()
    return row[0] if row is not None else None


def purge_expired_windows(db: Session, now: datetime | None = None) -> int:
    now = as_naive_utc(now) if now else utcnow()
    result = db.connection().execute(delete(RateLimitWindow).where(RateLimitWindow.window_end < now))
    db.commit()
    return result.rowcount or 0


def _maybe_purge(db: Session, now: datetime) -> None:
    global _last_inline_purge
    tick = time.monotonic()
    if tick - _last_inline_purge < _INLINE_PURGE_INTERVAL:
        return
    _last_inline_purge = tick
    try:
        purged = purge_expired_windows(db, now)
        if purged:
            log.debug("inline purge removed %s expired windows", purged)
    except Exception:
        db.rollback()
        log.warning("inline purge of expired rate limit windows failed", exc_info=True)


async def check_rate_limit(
    db: Session,
    identifier: str,
    identifier_type: IdentifierType | str,
    action: str,
    config: RateLimitConfig,
    company_id: str | None = None,
    now: datetime | None = None,
) -> RateLimitResult:
    """
    Admits at most `config.max_requests` calls per window for (identifier, type, action).
    Storage errors propagate (fail closed).
    """
    identifier_type = IdentifierType(identifier_type)
    now = as_naive_utc(now) if now else utcnow()
    window_start, window_end = window_bounds(now, config.window_minutes)

    count = _increment(
        db,
        identifier,
        identifier_type,
        action,
        window_start,
        window_end,
        config.max_requests,
        company_id,
        now,
    )

    if count is None:
        threat_recorder.submit(
            ThreatFinding(
                threat_type=ThreatType.RATE_LIMIT_EXCEEDED,
                severity=ThreatSeverity.MEDIUM,
                company_id=company_id,
                ip_address=identifier if identifier_type is IdentifierType.IP else None,
                details={
                    "identifier": identifier,
                    "identifierType": identifier_type.value,
                    "action": action,
                    "count": config.max_requests,
                    "maxRequests": config.max_requests,
                    "windowMinutes": config.window_minutes,
                },
            )
        )
        result = RateLimitResult(exceeded=True, remaining=0, reset_at=window_end)
    else:
        result = RateLimitResult(exceeded=False, remaining=max(config.max_requests - count, 0), reset_at=window_end)

    _maybe_purge(db, now)
    return result
