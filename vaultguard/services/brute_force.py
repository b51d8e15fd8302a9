"""Account lockout derived from recent LOGIN_FAILED audit entries. Holds no lock state of its own."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlmodel import Session, func, select

from vaultguard.core.timeutil import as_naive_utc, utcnow
from vaultguard.models import AuditLog, ThreatSeverity, ThreatType
from vaultguard.services.audit import LOGIN_FAILED
from vaultguard.services.threat_config import BruteForceConfig
from vaultguard.services.threat_recorder import ThreatFinding, threat_recorder

log = logging.getLogger("vaultguard.threat.brute_force")


@dataclass(frozen=True)
class BruteForceResult:
    locked: bool
    remaining_attempts: int
    unlock_at: datetime | None = None


def count_failed_logins(db: Session, user_id: int, since: datetime) -> int:
    stmt = (
        select(func.count())
        .select_from(AuditLog)
        .where(
            AuditLog.user_id == user_id,
            AuditLog.action == LOGIN_FAILED,
            AuditLog.created_at >= since,
        )
    )
    return int(db.exec(stmt).one())


async def check_brute_force(
    db: Session,
    user_id: int,
    config: BruteForceConfig,
    company_id: str | None = None,
    now: datetime | None = None,
) -> BruteForceResult:
    now = as_naive_utc(now) if now else utcnow()
    failed = count_failed_logins(db, user_id, now - timedelta(minutes=config.window_minutes))

    if failed < config.max_attempts:
        return BruteForceResult(locked=False, remaining_attempts=config.max_attempts - failed)

    unlock_at = now + timedelta(minutes=config.lockout_duration_minutes)
    log.warning("account locked user_id=%s failed=%s window_minutes=%s", user_id, failed, config.window_minutes)
    threat_recorder.submit(
        ThreatFinding(
            threat_type=ThreatType.BRUTE_FORCE,
            severity=ThreatSeverity.HIGH,
            user_id=user_id,
            company_id=company_id,
            details={
                "failedAttempts": failed,
                "maxAttempts": config.max_attempts,
                "windowMinutes": config.window_minutes,
                "lockoutDurationMinutes": config.lockout_duration_minutes,
            },
        )
    )
    return BruteForceResult(locked=True, remaining_attempts=0, unlock_at=unlock_at)
