"""Fixed-window request counters, one row per (identifier, type, action, window_start)."""
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from vaultguard.core.timeutil import utcnow


class IdentifierType(str, Enum):
    IP = "IP"
    USER = "USER"


class RateLimitWindow(SQLModel, table=True):
    __tablename__ = "rate_limit_windows"
    __table_args__ = (
        UniqueConstraint("identifier", "identifier_type", "action", "window_start", name="uq_rate_limit_window"),
    )
    id: int | None = Field(default=None, primary_key=True)
    identifier: str = Field(index=True)
    identifier_type: str
    action: str
    window_start: datetime = Field(sa_type=DateTime)
    window_end: datetime = Field(index=True, sa_type=DateTime)
    count: int = 1
    company_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
