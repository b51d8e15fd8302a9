from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: vaultguard/core/config.py -> vaultguard/core -> vaultguard -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./vaultguard.db"
    # Comma separated origin list; "*" for development
    cors_origins: str = "*"
    admin_secret: str = ""
    environment: str = "development"
    log_level: str = "INFO"
    access_token_expire_minutes: int = 60 * 12
    # Coarse per-IP edge limit (slowapi); policy limits live in the settings table
    rate_limit_per_minute: int = 60
    # Geo-IP provider (ip-api.com compatible JSON endpoint)
    geoip_api_url: str = "http://ip-api.com/json/{ip}?fields=status,message,countryCode,country,city,regionName,isp,proxy"
    geoip_timeout_seconds: float = 2.0
    geoip_cache_ttl_seconds: float = 3600.0
    # Resolved threat events older than this are purged
    threat_retention_days: int = 30
    # In-process janitor loop; 0 disables it (cron runs scripts/cleanup_threat_data.py instead)
    janitor_interval_minutes: int = 60
    # Findings are written by a background worker; false records them inline
    threat_recorder_async: bool = True
    threat_recorder_queue_size: int = 1000

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("admin_secret", "secret_key", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Whitespace from copy/paste must not end up in compared secrets."""
        return (v or "").strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: str | None) -> str:
        return (v or "INFO").strip().upper()


settings = Settings()


def cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
