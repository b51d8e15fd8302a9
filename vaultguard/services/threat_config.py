"""
Threat-detection policy resolved from the flat `settings` table.

Every leaf has a typed default; stored values under `security.threat.` override it.
A stored value that does not validate is dropped (logged) so resolution never fails.
"""
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from sqlmodel import Session, select

from vaultguard.core.timeutil import utcnow
from vaultguard.models import SettingEntry

log = logging.getLogger("vaultguard.threat.config")

SETTINGS_PREFIX = "security.threat."


class RateLimitConfig(BaseModel):
    max_requests: int = Field(ge=1)
    window_minutes: int = Field(ge=1)


class RateLimitingConfig(BaseModel):
    enabled: bool = True
    login: RateLimitConfig = RateLimitConfig(max_requests=5, window_minutes=15)
    password_reset: RateLimitConfig = RateLimitConfig(max_requests=3, window_minutes=60)
    api: RateLimitConfig = RateLimitConfig(max_requests=100, window_minutes=1)


class BruteForceConfig(BaseModel):
    enabled: bool = True
    max_attempts: int = Field(default=5, ge=1)
    lockout_duration_minutes: int = Field(default=15, ge=1)
    window_minutes: int = Field(default=15, ge=1)


class AnomalyDetectionConfig(BaseModel):
    enabled: bool = True
    check_unusual_location: bool = True
    check_unusual_time: bool = True
    check_unusual_device: bool = True


class CaptchaConfig(BaseModel):
    enabled: bool = True
    trigger_after_failed_attempts: int = Field(default=3, ge=1)


class ThreatDetectionConfig(BaseModel):
    enabled: bool = True
    rate_limiting: RateLimitingConfig = RateLimitingConfig()
    brute_force_protection: BruteForceConfig = BruteForceConfig()
    anomaly_detection: AnomalyDetectionConfig = AnomalyDetectionConfig()
    captcha: CaptchaConfig = CaptchaConfig()


# settings key (without prefix) -> path in ThreatDetectionConfig
SETTING_PATHS: dict[str, tuple[str, ...]] = {
    "enabled": ("enabled",),
    "rate_limiting.enabled": ("rate_limiting", "enabled"),
    "rate_limiting.login.max_requests": ("rate_limiting", "login", "max_requests"),
    "rate_limiting.login.window_minutes": ("rate_limiting", "login", "window_minutes"),
    "rate_limiting.password_reset.max_requests": ("rate_limiting", "password_reset", "max_requests"),
    "rate_limiting.password_reset.window_minutes": ("rate_limiting", "password_reset", "window_minutes"),
    "rate_limiting.api.max_requests": ("rate_limiting", "api", "max_requests"),
    "rate_limiting.api.window_minutes": ("rate_limiting", "api", "window_minutes"),
    "brute_force.enabled": ("brute_force_protection", "enabled"),
    "brute_force.max_attempts": ("brute_force_protection", "max_attempts"),
    "brute_force.lockout_duration_minutes": ("brute_force_protection", "lockout_duration_minutes"),
    "brute_force.window_minutes": ("brute_force_protection", "window_minutes"),
    "anomaly.enabled": ("anomaly_detection", "enabled"),
    "anomaly.check_unusual_location": ("anomaly_detection", "check_unusual_location"),
    "anomaly.check_unusual_time": ("anomaly_detection", "check_unusual_time"),
    "anomaly.check_unusual_device": ("anomaly_detection", "check_unusual_device"),
    "captcha.enabled": ("captcha", "enabled"),
    "captcha.trigger_after_failed_attempts": ("captcha", "trigger_after_failed_attempts"),
}

_POLICY_GROUPS = {
    "LOGIN": "login",
    "PASSWORD_RESET": "password_reset",
    "API": "api",
}


def list_settings(db: Session, prefix: str, company_id: str | None = None) -> list[SettingEntry]:
    """Global rows first, then the tenant's rows (which win on the same key)."""
    stmt = select(SettingEntry).where(SettingEntry.key.startswith(prefix))
    if company_id:
        stmt = stmt.where((SettingEntry.company_id == None) | (SettingEntry.company_id == company_id))  # noqa: E711
    else:
        stmt = stmt.where(SettingEntry.company_id == None)  # noqa: E711
    rows = list(db.exec(stmt).all())
    rows.sort(key=lambda r: (r.company_id is not None, r.key))
    return rows


def set_setting(db: Session, key: str, value: Any, company_id: str | None = None) -> SettingEntry:
    stmt = select(SettingEntry).where(SettingEntry.key == key, SettingEntry.company_id == company_id)
    entry = db.exec(stmt).first()
    if entry is None:
        entry = SettingEntry(key=key, value=value, company_id=company_id)
    else:
        entry.value = value
        entry.updated_at = utcnow()
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def _put(tree: dict, path: tuple[str, ...], value: Any) -> None:
    node = tree
    for part in path[:-1]:
        node = node.setdefault(part, {})
    node[path[-1]] = value


def _drop(tree: dict, path: tuple) -> None:
    node = tree
    for part in path[:-1]:
        node = node.get(part)
        if not isinstance(node, dict):
            return
    node.pop(path[-1], None)


def build_config(flat: dict[str, Any]) -> ThreatDetectionConfig:
    """Merges flat `security.threat.*` overrides over the typed defaults."""
    overrides: dict[str, Any] = {}
    for key, value in flat.items():
        path = SETTING_PATHS.get(key.removeprefix(SETTINGS_PREFIX))
        if path is None:
            log.debug("unknown threat setting ignored key=%s", key)
            continue
        if value is None:
            continue
        _put(overrides, path, value)
    # Partial groups must keep the defaults of their unset siblings
    defaults = ThreatDetectionConfig().model_dump()
    merged = _deep_merge(defaults, overrides)
    try:
        return ThreatDetectionConfig.model_validate(merged)
    except ValidationError as exc:
        for err in exc.errors():
            log.warning(
                "invalid threat setting dropped path=%s value=%r error=%s",
                ".".join(str(p) for p in err["loc"]),
                err.get("input"),
                err["msg"],
            )
            _drop(overrides, tuple(err["loc"]))
    return ThreatDetectionConfig.model_validate(_deep_merge(defaults, overrides))


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def get_threat_detection_config(db: Session, company_id: str | None = None) -> ThreatDetectionConfig:
    flat = {row.key: row.value for row in list_settings(db, SETTINGS_PREFIX, company_id)}
    return build_config(flat)


def rate_limit_policy(config: ThreatDetectionConfig, action: str) -> RateLimitConfig:
    group = _POLICY_GROUPS.get(action.strip().upper(), "api")
    return getattr(config.rate_limiting, group)
