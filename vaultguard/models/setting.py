"""Flat key/value settings store; threat policy keys live under `security.threat.`."""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from vaultguard.core.timeutil import utcnow


class SettingEntry(SQLModel, table=True):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("key", "company_id", name="uq_settings_key_company"),)
    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(index=True)
    value: Any = Field(default=None, sa_column=Column(JSON))
    company_id: str | None = Field(default=None, index=True)  # None = global
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
