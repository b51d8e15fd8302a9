from datetime import datetime, timedelta

from sqlmodel import Session, func, select

from vaultguard.core.timeutil import as_naive_utc, utcnow
from vaultguard.models import AuditLog, IdentifierType
from vaultguard.services.audit import failure_action
from vaultguard.services.threat_config import CaptchaConfig

CAPTCHA_LOOKBACK = timedelta(hours=1)


async def should_require_captcha(
    db: Session,
    identifier: str | int,
    identifier_type: IdentifierType | str,
    action: str,
    config: CaptchaConfig,
    company_id: str | None = None,
    now: datetime | None = None,
) -> bool:
    """True once the identifier has `trigger_after_failed_attempts` failures of `action` in the last hour."""
    identifier_type = IdentifierType(identifier_type)
    now = as_naive_utc(now) if now else utcnow()
    stmt = (
        select(func.count())
        .select_from(AuditLog)
        .where(
            AuditLog.action == failure_action(action),
            AuditLog.created_at >= now - CAPTCHA_LOOKBACK,
        )
    )
    if identifier_type is IdentifierType.IP:
        stmt = stmt.where(AuditLog.ip_address == str(identifier))
    else:
        stmt = stmt.where(AuditLog.user_id == int(identifier))
    failed = int(db.exec(stmt).one())
    return failed >= config.trigger_after_failed_attempts
