import hmac
from datetime import datetime

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from vaultguard.core.config import settings
from vaultguard.core.database import get_db
from vaultguard.core.rate_limit import get_client_ip
from vaultguard.core.security import decode_access_token
from vaultguard.core.timeutil import utcnow
from vaultguard.models import IdentifierType, User
from vaultguard.services.rate_limiter import check_rate_limit
from vaultguard.services.threat_config import get_threat_detection_config, rate_limit_policy

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return int(payload["sub"])


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled.")
    return user


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    """Admin API: X-Admin-Secret header, constant-time compare."""
    expected = settings.admin_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API not configured (ADMIN_SECRET missing).")
    if not hmac.compare_digest((x_admin_secret or "").encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Forbidden.")


def rate_limited(action: str):
    """Dependency factory: per-client-IP policy limit for `action`, 429 once exceeded."""

    async def _dependency(request: Request, db: Session = Depends(get_db)) -> None:
        config = get_threat_detection_config(db)
        if not (config.enabled and config.rate_limiting.enabled):
            return
        result = await check_rate_limit(
            db,
            get_client_ip(request),
            IdentifierType.IP,
            action,
            rate_limit_policy(config, action),
        )
        if result.exceeded:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests.",
                headers={"Retry-After": str(retry_after_seconds(result.reset_at))},
            )

    return _dependency


def retry_after_seconds(reset_at: datetime) -> int:
    return max(int((reset_at - utcnow()).total_seconds()), 1)
