"""Security panel: threat events, resolution workflow, policy settings, retention."""
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, func, select

from vaultguard.core.database import get_db
from vaultguard.core.timeutil import utcnow
from vaultguard.models import ThreatEvent, ThreatSeverity, ThreatType
from vaultguard.schemas import (
    RecorderStats,
    SettingUpdate,
    ThreatEventResponse,
    ThreatResolveRequest,
    ThreatSummary,
)
from vaultguard.services.audit import create_audit_log
from vaultguard.services.janitor import cleanup_threat_data
from vaultguard.services.threat_config import (
    SETTING_PATHS,
    SETTINGS_PREFIX,
    ThreatDetectionConfig,
    get_threat_detection_config,
    set_setting,
)
from vaultguard.services.threat_recorder import threat_recorder

router = APIRouter()


def _event_response(e: ThreatEvent) -> ThreatEventResponse:
    return ThreatEventResponse.model_validate(e, from_attributes=True)


@router.get("/events", response_model=list[ThreatEventResponse])
def list_events(
    db: Session = Depends(get_db),
    threat_type: ThreatType | None = None,
    severity: ThreatSeverity | None = None,
    resolved: bool | None = None,
    company_id: str | None = None,
    limit: int = 100,
):
    stmt = select(ThreatEvent).order_by(ThreatEvent.id.desc()).limit(max(1, min(limit, 500)))
    if threat_type:
        stmt = stmt.where(ThreatEvent.threat_type == threat_type.value)
    if severity:
        stmt = stmt.where(ThreatEvent.severity == severity.value)
    if resolved is not None:
        stmt = stmt.where(ThreatEvent.is_resolved == resolved)
    if company_id:
        stmt = stmt.where(ThreatEvent.company_id == company_id)
    return [_event_response(e) for e in db.exec(stmt).all()]


@router.post("/events/{event_id}/resolve", response_model=ThreatEventResponse)
def resolve_event(event_id: int, body: ThreatResolveRequest | None = None, db: Session = Depends(get_db)):
    event = db.get(ThreatEvent, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Threat event not found.")
    if not event.is_resolved:
        event.is_resolved = True
        event.resolved_at = utcnow()
        event.resolved_by = (body.resolved_by if body else None) or "admin"
        db.add(event)
        db.commit()
        db.refresh(event)
        create_audit_log(
            "THREAT_RESOLVED",
            "Security",
            resource_id=str(event.id),
            company_id=event.company_id,
            details={"resolvedBy": event.resolved_by, "note": body.note if body else None},
        )
    return _event_response(event)


@router.get("/summary", response_model=ThreatSummary)
def summary(db: Session = Depends(get_db), company_id: str | None = None):
    def _scoped(stmt):
        return stmt.where(ThreatEvent.company_id == company_id) if company_id else stmt

    total = db.exec(_scoped(select(func.count()).select_from(ThreatEvent))).one()
    resolved = db.exec(
        _scoped(select(func.count()).select_from(ThreatEvent).where(ThreatEvent.is_resolved == True))  # noqa: E712
    ).one()
    by_type = {
        row[0]: row[1]
        for row in db.exec(_scoped(select(ThreatEvent.threat_type, func.count(ThreatEvent.id)).group_by(ThreatEvent.threat_type))).all()
    }
    by_severity = {
        row[0]: row[1]
        for row in db.exec(_scoped(select(ThreatEvent.severity, func.count(ThreatEvent.id)).group_by(ThreatEvent.severity))).all()
    }
    return ThreatSummary(
        total=total,
        resolved=resolved,
        unresolved=total - resolved,
        resolution_rate=round(resolved / total * 100, 2) if total else 0.0,
        by_type=by_type,
        by_severity=by_severity,
        recorder=RecorderStats(running=threat_recorder.running, **threat_recorder.stats),
    )


@router.get("/config", response_model=ThreatDetectionConfig)
def current_config(db: Session = Depends(get_db), company_id: str | None = None):
    return get_threat_detection_config(db, company_id)


@router.put("/config", response_model=ThreatDetectionConfig)
def update_setting(body: SettingUpdate, db: Session = Depends(get_db)):
    key = body.key.removeprefix(SETTINGS_PREFIX)
    if key not in SETTING_PATHS:
        raise HTTPException(status_code=422, detail=f"Unknown threat setting: {body.key}")
    set_setting(db, SETTINGS_PREFIX + key, body.value, body.company_id)
    create_audit_log(
        "THREAT_SETTING_UPDATED",
        "Settings",
        resource_id=SETTINGS_PREFIX + key,
        company_id=body.company_id,
        details={"value": body.value},
    )
    return get_threat_detection_config(db, body.company_id)


@router.post("/cleanup")
def run_cleanup(db: Session = Depends(get_db)):
    cleanup_threat_data(db)
    return {"ok": True}
