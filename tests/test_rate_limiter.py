"""Fixed-window rate limiter: admission sequence, rollover, threat events."""
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, create_engine, select

from vaultguard.models import IdentifierType, RateLimitWindow, ThreatEvent
from vaultguard.services import rate_limiter
from vaultguard.services.rate_limiter import check_rate_limit, purge_expired_windows, window_bounds
from vaultguard.services.threat_config import RateLimitConfig
from vaultguard.services.threat_recorder import ThreatEventRecorder

NOW = datetime(2026, 3, 10, 12, 7, 30)
POLICY = RateLimitConfig(max_requests=5, window_minutes=15)


def _events(db, threat_type="RATE_LIMIT_EXCEEDED"):
    return list(db.exec(select(ThreatEvent).where(ThreatEvent.threat_type == threat_type)).all())


def test_window_bounds_are_quantized():
    start, end = window_bounds(NOW, 15)
    assert start == datetime(2026, 3, 10, 12, 0)
    assert end == datetime(2026, 3, 10, 12, 15)
    assert window_bounds(NOW + timedelta(minutes=5), 15) == (start, end)


@pytest.mark.asyncio
async def test_five_admitted_then_exceeded(db):
    remaining = []
    for i in range(5):
        r = await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=NOW + timedelta(seconds=i))
        assert r.exceeded is False
        remaining.append(r.remaining)
    assert remaining == [4, 3, 2, 1, 0]
    assert _events(db) == []

    r = await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=NOW + timedelta(seconds=10))
    assert r.exceeded is True
    assert r.remaining == 0
    assert r.reset_at == datetime(2026, 3, 10, 12, 15)

    events = _events(db)
    assert len(events) == 1
    assert events[0].severity == "MEDIUM"
    assert events[0].ip_address == "203.0.113.7"
    assert events[0].details["maxRequests"] == 5
    assert events[0].details["action"] == "LOGIN"


@pytest.mark.asyncio
async def test_count_never_exceeds_max(db):
    for i in range(8):
        await check_rate_limit(db, "user-1", "USER", "API", POLICY, now=NOW)
    row = db.exec(select(RateLimitWindow)).one()
    assert row.count == 5
    assert row.identifier_type == "USER"
    assert len(_events(db)) == 3


@pytest.mark.asyncio
async def test_new_window_starts_fresh(db):
    for _ in range(6):
        await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=NOW)
    later = NOW + timedelta(minutes=15)
    r = await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=later)
    assert r.exceeded is False
    assert r.remaining == 4
    assert r.reset_at == datetime(2026, 3, 10, 12, 30)


@pytest.mark.asyncio
async def test_identity_tuple_is_isolated(db):
    for _ in range(5):
        await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=NOW)
    other_action = await check_rate_limit(db, "203.0.113.7", IdentifierType.IP, "PASSWORD_RESET", POLICY, now=NOW)
    other_ip = await check_rate_limit(db, "203.0.113.8", IdentifierType.IP, "LOGIN", POLICY, now=NOW)
    other_type = await check_rate_limit(db, "203.0.113.7", IdentifierType.USER, "LOGIN", POLICY, now=NOW)
    assert not other_action.exceeded
    assert not other_ip.exceeded
    assert not other_type.exceeded


@pytest.mark.asyncio
async def test_user_identifier_event_has_no_ip(db):
    policy = RateLimitConfig(max_requests=1, window_minutes=1)
    await check_rate_limit(db, "42", IdentifierType.USER, "API", policy, company_id="acme", now=NOW)
    r = await check_rate_limit(db, "42", IdentifierType.USER, "API", policy, company_id="acme", now=NOW)
    assert r.exceeded
    event = _events(db)[0]
    assert event.ip_address is None
    assert event.company_id == "acme"


@pytest.mark.asyncio
async def test_unknown_identifier_type_rejected(db):
    with pytest.raises(ValueError):
        await check_rate_limit(db, "x", "DEVICE", "LOGIN", POLICY, now=NOW)


def test_purge_expired_windows(db):
    db.add(RateLimitWindow(identifier="a", identifier_type="IP", action="LOGIN",
                           window_start=NOW - timedelta(hours=1), window_end=NOW - timedelta(minutes=45)))
    db.add(RateLimitWindow(identifier="b", identifier_type="IP", action="LOGIN",
                           window_start=NOW, window_end=NOW + timedelta(minutes=15)))
    db.commit()
    assert purge_expired_windows(db, NOW) == 1
    assert [w.identifier for w in db.exec(select(RateLimitWindow)).all()] == ["b"]


def test_concurrent_calls_never_admit_past_max(tmp_path, monkeypatch):
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'limits.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )
    SQLModel.metadata.create_all(file_engine)
    monkeypatch.setattr(
        rate_limiter,
        "threat_recorder",
        ThreatEventRecorder(session_factory=lambda: Session(file_engine)),
    )
    workers = 30
    barrier = threading.Barrier(workers)

    def attempt(_):
        with Session(file_engine) as session:
            barrier.wait()
            return asyncio.run(
                check_rate_limit(session, "203.0.113.7", IdentifierType.IP, "LOGIN", POLICY, now=NOW)
            )

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))

    admitted = [r for r in results if not r.exceeded]
    assert len(admitted) == POLICY.max_requests
    assert sorted(r.remaining for r in admitted) == [0, 1, 2, 3, 4]
    with Session(file_engine) as session:
        assert session.exec(select(RateLimitWindow)).one().count == POLICY.max_requests
        assert len(session.exec(select(ThreatEvent)).all()) == workers - POLICY.max_requests
    file_engine.dispose()
