"""Audit sink: durable audit_logs rows for authentication and security actions."""
import logging
from typing import Any

from sqlmodel import Session

from vaultguard.core.database import engine
from vaultguard.core.timeutil import utcnow
from vaultguard.models import AuditLog, AuditStatus

log = logging.getLogger("vaultguard.audit")

LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"


def failure_action(action: str) -> str:
    """Audit action recorded when `action` fails: LOGIN -> LOGIN_FAILED, X -> X_FAILED."""
    action = action.strip().upper()
    if action == "LOGIN":
        return LOGIN_FAILED
    return f"{action}_FAILED"


def record_audit(
    db: Session,
    action: str,
    resource: str,
    status: AuditStatus | str = AuditStatus.SUCCESS,
    resource_id: str | None = None,
    user_id: int | None = None,
    company_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | str | None = None,
) -> AuditLog:
    """Writes one audit row and commits. Errors propagate to the caller."""
    if isinstance(details, str):
        details = {"message": details}
    entry = AuditLog(
        action=action,
        resource=resource,
        resource_id=resource_id,
        status=AuditStatus(status).value,
        user_id=user_id,
        company_id=company_id,
        ip_address=ip_address or None,
        user_agent=user_agent or None,
        details=details or None,
        created_at=utcnow(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def create_audit_log(action: str, resource: str, **kwargs: Any) -> None:
    """Fire-and-forget variant for request handlers: own session, failures only logged."""
    try:
        with Session(engine) as db:
            record_audit(db, action, resource, **kwargs)
    except Exception:
        log.exception(
            "audit write failed action=%s resource=%s user_id=%s ip=%s",
            action,
            resource,
            kwargs.get("user_id"),
            kwargs.get("ip_address"),
        )
