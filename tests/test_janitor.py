import asyncio
from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from vaultguard.models import RateLimitWindow, ThreatEvent
from vaultguard.services.janitor import cleanup_threat_data

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _event(db, resolved_at=None, created_at=NOW - timedelta(days=365)):
    e = ThreatEvent(
        threat_type="BRUTE_FORCE",
        severity="HIGH",
        created_at=created_at,
        is_resolved=resolved_at is not None,
        resolved_at=resolved_at,
        resolved_by="admin" if resolved_at else None,
    )
    db.add(e)
    db.commit()
    db.refresh(e)
    return e.id


def _window(db, end):
    w = RateLimitWindow(
        identifier="203.0.113.1",
        identifier_type="IP",
        action="LOGIN",
        window_start=end - timedelta(minutes=15),
        window_end=end,
        count=3,
    )
    db.add(w)
    db.commit()
    db.refresh(w)
    return w.id


def test_cleanup_respects_retention(db):
    old_resolved = _event(db, resolved_at=NOW - timedelta(days=31))
    fresh_resolved = _event(db, resolved_at=NOW - timedelta(days=1))
    old_unresolved = _event(db)
    cleanup_threat_data(db, now=NOW)
    db.expire_all()
    remaining = {e.id for e in db.exec(select(ThreatEvent)).all()}
    assert remaining == {fresh_resolved, old_unresolved}
    assert old_resolved not in remaining


def test_cleanup_purges_expired_windows_only(db):
    expired = _window(db, NOW - timedelta(minutes=1))
    live = _window(db, NOW + timedelta(minutes=5))
    cleanup_threat_data(db, now=NOW)
    db.expire_all()
    assert {w.id for w in db.exec(select(RateLimitWindow)).all()} == {live}
    assert db.get(RateLimitWindow, expired) is None


def test_cleanup_is_idempotent_with_own_session(db):
    _event(db, resolved_at=NOW - timedelta(days=90))
    cleanup_threat_data(now=NOW)
    cleanup_threat_data(now=NOW)
    db.expire_all()
    assert db.exec(select(ThreatEvent)).all() == []


def test_cleanup_failure_is_logged_not_raised(monkeypatch, caplog):
    from vaultguard.services import janitor

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(janitor, "_purge", broken)
    cleanup_threat_data(now=NOW)
    assert "threat data cleanup failed" in caplog.text


@pytest.mark.asyncio
async def test_run_janitor_runs_a_pass_then_sleeps(monkeypatch):
    from vaultguard.services import janitor

    loop = asyncio.get_running_loop()
    ran = asyncio.Event()
    calls = []

    def fake_cleanup():
        calls.append(1)
        loop.call_soon_threadsafe(ran.set)

    monkeypatch.setattr(janitor, "cleanup_threat_data", fake_cleanup)
    task = asyncio.create_task(janitor.run_janitor(60))
    await asyncio.wait_for(ran.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls == [1]
