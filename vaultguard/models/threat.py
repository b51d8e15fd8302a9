from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vaultguard.core.timeutil import utcnow


class ThreatType(str, Enum):
    BRUTE_FORCE = "BRUTE_FORCE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    UNUSUAL_ACCESS_PATTERN = "UNUSUAL_ACCESS_PATTERN"
    SUSPICIOUS_LOCATION = "SUSPICIOUS_LOCATION"
    MULTIPLE_FAILED_LOGINS = "MULTIPLE_FAILED_LOGINS"
    ANOMALY_DETECTED = "ANOMALY_DETECTED"


class ThreatSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ThreatSeverity.LOW: 0,
    ThreatSeverity.MEDIUM: 1,
    ThreatSeverity.HIGH: 2,
    ThreatSeverity.CRITICAL: 3,
}


class ThreatEvent(SQLModel, table=True):
    """Detected security condition. Unresolved events are never purged."""
    __tablename__ = "threat_events"
    id: int | None = Field(default=None, primary_key=True)
    threat_type: str = Field(index=True)
    severity: str = Field(index=True)
    user_id: int | None = Field(default=None, index=True)
    company_id: str | None = Field(default=None, index=True)
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    is_resolved: bool = Field(default=False, index=True)
    resolved_at: datetime | None = Field(default=None, sa_type=DateTime)
    resolved_by: str | None = None
