from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from vaultguard.core.timeutil import utcnow


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str = ""
    company_id: str | None = Field(default=None, index=True)
    is_active: bool = True
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=DateTime)
    last_login_at: datetime | None = Field(default=None, sa_type=DateTime)
