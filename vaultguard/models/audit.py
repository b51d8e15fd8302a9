from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vaultguard.core.timeutil import utcnow


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    WARNING = "WARNING"
    BLOCKED = "BLOCKED"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(index=True)  # LOGIN_SUCCESS, LOGIN_FAILED, THREAT_BRUTE_FORCE, ...
    resource: str
    resource_id: str | None = None
    status: str = Field(default=AuditStatus.SUCCESS.value, index=True)
    user_id: int | None = Field(default=None, index=True)
    company_id: str | None = Field(default=None, index=True)
    ip_address: str | None = Field(default=None, index=True)
    user_agent: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
