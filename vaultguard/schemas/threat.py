from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ThreatEventResponse(BaseModel):
    id: int
    threat_type: str
    severity: str
    user_id: int | None = None
    company_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime
    is_resolved: bool
    resolved_at: datetime | None = None
    resolved_by: str | None = None


class ThreatResolveRequest(BaseModel):
    resolved_by: str | None = None
    note: str | None = None


class RecorderStats(BaseModel):
    running: bool
    recorded: int = 0
    failed: int = 0
    orphaned: int = 0
    dropped: int = 0


class ThreatSummary(BaseModel):
    total: int
    resolved: int
    unresolved: int
    resolution_rate: float
    by_type: dict[str, int]
    by_severity: dict[str, int]
    recorder: RecorderStats


class SettingUpdate(BaseModel):
    """Key without the `security.threat.` prefix, e.g. `rate_limiting.login.max_requests`."""
    key: str
    value: Any
    company_id: str | None = None
