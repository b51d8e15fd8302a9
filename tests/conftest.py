"""Pytest fixtures: in-memory SQLite, test client, table cleanup between tests."""
import os
from datetime import datetime

import pytest

# Must be set before vaultguard is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
# Edge limiter high so only the policy limiter is exercised
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
os.environ.setdefault("JANITOR_INTERVAL_MINUTES", "0")
# One shared SQLite connection: record findings inline instead of from a worker thread
os.environ.setdefault("THREAT_RECORDER_ASYNC", "false")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from vaultguard.core import geo  # noqa: E402
from vaultguard.core.database import engine, init_db  # noqa: E402
from vaultguard.main import app  # noqa: E402
from vaultguard.models import AuditLog, AuditStatus  # noqa: E402
from vaultguard.services.threat_recorder import threat_recorder  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}


@pytest.fixture(autouse=True)
def _clean_state():
    init_db()
    geo.clear_cache()
    threat_recorder.stats.clear()
    yield
    with Session(engine) as s:
        for table in reversed(SQLModel.metadata.sorted_tables):
            s.connection().execute(table.delete())
        s.commit()


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers() -> dict:
    return dict(ADMIN_HEADERS)


@pytest.fixture
def add_audit(db: Session):
    """Inserts an audit row with an explicit timestamp."""

    def _add(action: str, created_at: datetime, **kwargs) -> AuditLog:
        entry = AuditLog(
            action=action,
            resource=kwargs.pop("resource", "Auth"),
            status=kwargs.pop("status", AuditStatus.SUCCESS.value),
            created_at=created_at,
            **kwargs,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    return _add
