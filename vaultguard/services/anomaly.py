"""
Login anomaly heuristics against the user's recent successful logins.

Location, time of day and device are checked independently; each positive check adds
a reason and raises severity to at least MEDIUM. A user with no history is never
anomalous.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlmodel import Session, select

from vaultguard.core.device import UNKNOWN_DEVICE, DeviceInfo, parse_user_agent
from vaultguard.core.geo import GeoInfo, lookup_ip
from vaultguard.core.timeutil import as_naive_utc, utcnow
from vaultguard.models import AuditLog, ThreatSeverity, ThreatType
from vaultguard.services.audit import LOGIN_SUCCESS
from vaultguard.services.threat_config import AnomalyDetectionConfig
from vaultguard.services.threat_recorder import ThreatFinding, threat_recorder

log = logging.getLogger("vaultguard.threat.anomaly")

HISTORY_LIMIT = 10
HISTORY_DAYS = 30
# Logins in [02:00, 06:00) UTC are unusual unless the user has done it before
UNUSUAL_HOURS = range(2, 6)

REASON_LOCATION = "Unusual location detected"
REASON_TIME = "Unusual login time detected"
REASON_DEVICE = "Unusual device detected"


@dataclass
class AnomalyResult:
    is_anomaly: bool
    reasons: list[str] = field(default_factory=list)
    severity: ThreatSeverity = ThreatSeverity.LOW


def _escalate(current: ThreatSeverity, floor: ThreatSeverity) -> ThreatSeverity:
    return floor if floor.rank > current.rank else current


def recent_logins(db: Session, user_id: int, now: datetime) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(
            AuditLog.user_id == user_id,
            AuditLog.action == LOGIN_SUCCESS,
            AuditLog.created_at >= now - timedelta(days=HISTORY_DAYS),
            AuditLog.created_at <= now,
        )
        .order_by(AuditLog.created_at.desc())
        .limit(HISTORY_LIMIT)
    )
    return list(db.exec(stmt).all())


def _is_unusual_location(history: list[AuditLog], current: GeoInfo | None) -> bool:
    if current is None:
        return False
    seen = {
        str(entry.details["countryCode"]).upper()
        for entry in history
        if entry.details and entry.details.get("countryCode")
    }
    return bool(seen) and current.country_code not in seen


def _is_unusual_time(history: list[AuditLog], now: datetime) -> bool:
    if now.hour not in UNUSUAL_HOURS:
        return False
    return not any(entry.created_at.hour in UNUSUAL_HOURS for entry in history)


def _is_unusual_device(history: list[AuditLog], current: DeviceInfo, parse: Callable[[str | None], DeviceInfo]) -> bool:
    known = {parse(entry.user_agent).device_name for entry in history}
    known.discard(UNKNOWN_DEVICE)
    return bool(known) and current.device_name not in known


async def detect_anomalies(
    db: Session,
    user_id: int,
    ip_address: str | None,
    user_agent: str | None,
    config: AnomalyDetectionConfig,
    company_id: str | None = None,
    now: datetime | None = None,
    geo_lookup: Callable[[str | None], GeoInfo | None] = lookup_ip,
    ua_parser: Callable[[str | None], DeviceInfo] = parse_user_agent,
) -> AnomalyResult:
    """Storage and geo lookup errors propagate; the caller decides how advisory this is."""
    now = as_naive_utc(now) if now else utcnow()
    history = recent_logins(db, user_id, now)
    if not history:
        return AnomalyResult(is_anomaly=False)

    result = AnomalyResult(is_anomaly=False)

    if config.check_unusual_location and ip_address:
        if _is_unusual_location(history, geo_lookup(ip_address)):
            result.reasons.append(REASON_LOCATION)
            result.severity = _escalate(result.severity, ThreatSeverity.MEDIUM)

    if config.check_unusual_time and _is_unusual_time(history, now):
        result.reasons.append(REASON_TIME)
        result.severity = _escalate(result.severity, ThreatSeverity.MEDIUM)

    if config.check_unusual_device and user_agent:
        if _is_unusual_device(history, ua_parser(user_agent), ua_parser):
            result.reasons.append(REASON_DEVICE)
            result.severity = _escalate(result.severity, ThreatSeverity.MEDIUM)

    result.is_anomaly = bool(result.reasons)
    if result.is_anomaly:
        log.info("login anomaly user_id=%s reasons=%s", user_id, result.reasons)
        threat_recorder.submit(
            ThreatFinding(
                threat_type=ThreatType.ANOMALY_DETECTED,
                severity=result.severity,
                user_id=user_id,
                company_id=company_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={
                    "reasons": list(result.reasons),
                    "anomalyType": ", ".join(result.reasons),
                },
            )
        )
    return result
