"""Retention: purges resolved threat events past retention and expired rate-limit windows."""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlmodel import Session

from vaultguard.core.config import settings
from vaultguard.core.database import engine
from vaultguard.core.timeutil import as_naive_utc, utcnow
from vaultguard.models import ThreatEvent
from vaultguard.services.rate_limiter import purge_expired_windows

log = logging.getLogger("vaultguard.threat.janitor")


def _purge(db: Session, now: datetime, retention_days: int) -> tuple[int, int]:
    cutoff = now - timedelta(days=retention_days)
    result = db.connection().execute(
        delete(ThreatEvent).where(
            ThreatEvent.is_resolved == True,  # noqa: E712
            ThreatEvent.resolved_at != None,  # noqa: E711
            ThreatEvent.resolved_at < cutoff,
        )
    )
    db.commit()
    events = result.rowcount or 0
    windows = purge_expired_windows(db, now)
    return events, windows


def cleanup_threat_data(db: Session | None = None, now: datetime | None = None) -> None:
    """Idempotent; errors are logged, never raised."""
    now = as_naive_utc(now) if now else utcnow()
    retention_days = settings.threat_retention_days
    try:
        if db is None:
            with Session(engine) as own:
                events, windows = _purge(own, now, retention_days)
        else:
            events, windows = _purge(db, now, retention_days)
    except Exception:
        if db is not None:
            db.rollback()
        log.exception("threat data cleanup failed retention_days=%s", retention_days)
        return
    log.info("threat data cleanup done events_deleted=%s windows_deleted=%s", events, windows)


async def run_janitor(interval_minutes: int) -> None:
    """Background loop started by the app lifespan; one pass per interval."""
    log.info("janitor started interval_minutes=%s", interval_minutes)
    while True:
        await asyncio.to_thread(cleanup_threat_data)
        await asyncio.sleep(interval_minutes * 60)
