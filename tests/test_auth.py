"""Login flow gated by rate limiting, CAPTCHA and brute-force protection."""
from fastapi.testclient import TestClient
from sqlmodel import select

from vaultguard.api import auth as auth_api
from vaultguard.core import geo
from vaultguard.core.geo import GeoInfo, GeoLookupError
from vaultguard.main import app
from vaultguard.models import AuditLog, ThreatEvent
from vaultguard.services.anomaly import REASON_LOCATION
from vaultguard.services.threat_config import set_setting

EMAIL = "ayse@example.com"
PASSWORD = "correct-horse-42"


def _register(client, email=EMAIL, company_id=None):
    r = client.post(
        "/auth/register",
        json={"email": email, "password": PASSWORD, "full_name": "Ayse", "company_id": company_id},
    )
    assert r.status_code == 200, r.text
    return r.json()


def _login(client, password=PASSWORD, ip="198.51.100.7", **extra):
    return client.post(
        "/auth/login",
        json={"email": EMAIL, "password": password, **extra},
        headers={"X-Forwarded-For": ip},
    )


def _actions(db):
    db.expire_all()
    return [a.action for a in db.exec(select(AuditLog).order_by(AuditLog.id)).all()]


def test_register_login_and_me(client, db):
    user = _register(client)
    assert user["email"] == EMAIL

    r = _login(client)
    assert r.status_code == 200
    token = r.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]

    success = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_SUCCESS")).one()
    assert success.user_id == user["id"]
    assert success.ip_address == "198.51.100.7"
    assert success.details == {"countryCode": None}


def test_register_rejects_duplicates_and_short_passwords(client):
    _register(client)
    assert client.post("/auth/register", json={"email": EMAIL, "password": PASSWORD}).status_code == 400
    r = client.post("/auth/register", json={"email": "b@example.com", "password": "short"})
    assert r.status_code == 422


def test_me_requires_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_wrong_password_is_audited(client, db):
    user = _register(client)
    r = _login(client, password="wrong-password")
    assert r.status_code == 401
    failed = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_FAILED")).one()
    assert failed.user_id == user["id"]
    assert failed.status == "FAILED"
    assert failed.ip_address == "198.51.100.7"


def test_unknown_email_is_audited_without_user(client, db):
    r = _login(client)
    assert r.status_code == 401
    failed = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_FAILED")).one()
    assert failed.user_id is None


def test_sixth_login_in_window_is_rate_limited(client, db):
    _register(client)
    for _ in range(5):
        assert _login(client).status_code == 200
    r = _login(client)
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) >= 1
    events = db.exec(select(ThreatEvent)).all()
    assert [e.threat_type for e in events] == ["RATE_LIMIT_EXCEEDED"]
    assert events[0].ip_address == "198.51.100.7"

    # Another client IP has its own window
    assert _login(client, ip="198.51.100.8").status_code == 200


def test_captcha_required_after_three_failures(client):
    _register(client)
    for _ in range(3):
        assert _login(client, password="wrong-password").status_code == 401
    r = _login(client)
    assert r.status_code == 428
    assert r.json()["error"] == "captcha_required"

    # A solved challenge lets the attempt through
    assert _login(client, captcha_token="solved-token").status_code == 200


def test_account_locked_after_five_failures(client, db):
    user = _register(client)
    # Spread across IPs so neither the CAPTCHA gate nor the IP limit trips
    for i in range(5):
        assert _login(client, password="wrong-password", ip=f"203.0.113.{i + 1}").status_code == 401
    r = _login(client, ip="203.0.113.50")
    assert r.status_code == 423
    assert "Retry-After" in r.headers

    db.expire_all()
    events = db.exec(select(ThreatEvent).where(ThreatEvent.threat_type == "BRUTE_FORCE")).all()
    assert len(events) == 1
    assert events[0].severity == "HIGH"
    assert events[0].user_id == user["id"]
    actions = _actions(db)
    assert "LOGIN_BLOCKED" in actions
    assert "THREAT_BRUTE_FORCE" in actions
    assert "LOGIN_SUCCESS" not in actions


def test_disabled_engine_lets_everything_through(client, db):
    _register(client)
    set_setting(db, "security.threat.enabled", False)
    for _ in range(8):
        assert _login(client, password="wrong-password").status_code == 401
    assert _login(client).status_code == 200
    assert db.exec(select(ThreatEvent)).all() == []


def test_tenant_policy_applies_to_tenant_users(client, db):
    _register(client, company_id="acme")
    set_setting(db, "security.threat.rate_limiting.login.max_requests", 2, company_id="acme")
    assert _login(client).status_code == 200
    assert _login(client).status_code == 200
    assert _login(client).status_code == 429


def test_limiter_error_denies_login(monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(auth_api, "check_rate_limit", broken)
    with TestClient(app, raise_server_exceptions=False) as c:
        _register(c)
        r = _login(c)
    assert r.status_code == 500
    assert "access_token" not in r.json()


def test_expired_or_foreign_tokens_rejected(client):
    from jose import jwt

    from vaultguard.core.config import settings
    from vaultguard.core.security import create_access_token, decode_access_token

    user = _register(client)
    expired = create_access_token(user["id"], expires_minutes=-1)
    assert decode_access_token(expired) is None
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401

    foreign = jwt.encode({"sub": str(user["id"]), "iss": "someone-else"}, settings.secret_key, algorithm="HS256")
    assert decode_access_token(foreign) is None


def test_malformed_stored_hash_never_verifies():
    from vaultguard.core.security import hash_password, verify_password

    assert verify_password(PASSWORD, hash_password(PASSWORD)) is True
    assert verify_password(PASSWORD, "not-a-bcrypt-hash") is False
    assert verify_password(PASSWORD, None) is False


def test_login_country_enrichment_feeds_anomaly_check(client, db, monkeypatch):
    _register(client)
    monkeypatch.setattr(geo, "_fetch", lambda ip: GeoInfo(country_code="DE"))
    assert _login(client, ip="8.8.8.8").status_code == 200
    first = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_SUCCESS")).one()
    assert first.details == {"countryCode": "DE"}

    monkeypatch.setattr(geo, "_fetch", lambda ip: GeoInfo(country_code="RU"))
    assert _login(client, ip="1.1.1.1").status_code == 200
    db.expire_all()
    events = db.exec(select(ThreatEvent).where(ThreatEvent.threat_type == "ANOMALY_DETECTED")).all()
    assert len(events) == 1
    assert REASON_LOCATION in events[0].details["reasons"]
    latest = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_SUCCESS").order_by(AuditLog.id.desc())).first()
    assert latest.details == {"countryCode": "RU"}


def test_login_succeeds_when_geo_provider_is_down(client, db, monkeypatch, caplog):
    _register(client)

    def down(ip):
        raise GeoLookupError("provider timeout")

    monkeypatch.setattr(geo, "_fetch", down)
    assert _login(client, ip="8.8.8.8").status_code == 200
    success = db.exec(select(AuditLog).where(AuditLog.action == "LOGIN_SUCCESS")).one()
    assert success.details == {"countryCode": None}
    assert "geo enrichment skipped" in caplog.text
