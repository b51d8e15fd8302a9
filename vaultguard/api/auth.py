"""Auth: register, login (gated by the threat engine), me."""
import asyncio
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlmodel import Session, select

from vaultguard.api.deps import get_current_user, retry_after_seconds
from vaultguard.core.config import settings
from vaultguard.core.database import engine, get_db
from vaultguard.core.geo import GeoInfo, get_country_from_ip
from vaultguard.core.rate_limit import get_client_ip, limiter
from vaultguard.core.security import create_access_token, hash_password, verify_password
from vaultguard.core.timeutil import utcnow
from vaultguard.models import AuditStatus, IdentifierType, User
from vaultguard.schemas import Token, UserCreate, UserLogin, UserResponse
from vaultguard.services.anomaly import detect_anomalies
from vaultguard.services.audit import LOGIN_FAILED, LOGIN_SUCCESS, create_audit_log
from vaultguard.services.brute_force import check_brute_force
from vaultguard.services.captcha import should_require_captcha
from vaultguard.services.rate_limiter import check_rate_limit
from vaultguard.services.threat_config import AnomalyDetectionConfig, get_threat_detection_config

log = logging.getLogger("vaultguard.auth")

router = APIRouter(prefix="/auth", tags=["auth"])
_AUTH_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id or 0,
        email=user.email,
        full_name=user.full_name or "",
        company_id=user.company_id,
    )


async def _after_login(
    user_id: int,
    company_id: str | None,
    ip: str,
    user_agent: str | None,
    anomaly_config: AnomalyDetectionConfig | None,
) -> None:
    """Advisory work off the response path: anomaly check, then the LOGIN_SUCCESS audit row."""
    # Provider failures are logged inside and leave the country unknown
    country_code = await asyncio.to_thread(get_country_from_ip, ip)
    if anomaly_config is not None:
        try:
            with Session(engine) as db:
                await detect_anomalies(
                    db,
                    user_id,
                    ip,
                    user_agent,
                    anomaly_config,
                    company_id=company_id,
                    geo_lookup=lambda _ip: GeoInfo(country_code=country_code) if country_code else None,
                )
        except Exception:
            log.exception("anomaly detection failed user_id=%s ip=%s", user_id, ip)
    create_audit_log(
        LOGIN_SUCCESS,
        "Auth",
        status=AuditStatus.SUCCESS,
        resource_id=str(user_id),
        user_id=user_id,
        company_id=company_id,
        ip_address=ip,
        user_agent=user_agent,
        details={"countryCode": country_code},
    )


@router.post("/register", response_model=UserResponse)
@limiter.limit(_AUTH_RATE_LIMIT)
async def register(request: Request, body: UserCreate, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="This email address is already registered.")
    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        full_name=body.full_name.strip(),
        company_id=body.company_id or None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    create_audit_log(
        "REGISTER",
        "User",
        resource_id=str(user.id),
        user_id=user.id,
        company_id=user.company_id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _user_response(user)


@router.post("/login", response_model=Token)
@limiter.limit(_AUTH_RATE_LIMIT)
async def login(
    request: Request,
    body: UserLogin,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    email = body.email.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    user = db.exec(select(User).where(User.email == email)).first()
    company_id = user.company_id if user else None
    config = get_threat_detection_config(db, company_id)
    active = config.enabled

    if active and config.rate_limiting.enabled:
        limit = await check_rate_limit(db, ip, IdentifierType.IP, "LOGIN", config.rate_limiting.login, company_id)
        if limit.exceeded:
            raise HTTPException(
                status_code=429,
                detail="Too many login attempts. Try again later.",
                headers={"Retry-After": str(retry_after_seconds(limit.reset_at))},
            )

    if active and config.captcha.enabled and not (body.captcha_token or "").strip():
        if await should_require_captcha(db, ip, IdentifierType.IP, "LOGIN", config.captcha, company_id):
            raise HTTPException(status_code=428, detail="captcha_required")

    if user and active and config.brute_force_protection.enabled:
        guard = await check_brute_force(db, user.id, config.brute_force_protection, company_id)
        if guard.locked:
            create_audit_log(
                "LOGIN_BLOCKED",
                "Auth",
                status=AuditStatus.BLOCKED,
                resource_id=str(user.id),
                user_id=user.id,
                company_id=company_id,
                ip_address=ip,
                user_agent=user_agent,
                details={"unlockAt": guard.unlock_at.isoformat()},
            )
            raise HTTPException(
                status_code=423,
                detail=f"Account temporarily locked until {guard.unlock_at.isoformat()}Z.",
                headers={"Retry-After": str(retry_after_seconds(guard.unlock_at))},
            )

    if not user or not user.is_active or not verify_password(body.password, user.hashed_password):
        create_audit_log(
            LOGIN_FAILED,
            "Auth",
            status=AuditStatus.FAILED,
            resource_id=str(user.id) if user else None,
            user_id=user.id if user else None,
            company_id=company_id,
            ip_address=ip,
            user_agent=user_agent,
            details={"email": email},
        )
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    user.last_login_at = utcnow()
    db.add(user)
    db.commit()
    anomaly_config = config.anomaly_detection if active and config.anomaly_detection.enabled else None
    background_tasks.add_task(_after_login, user.id, company_id, ip, user_agent, anomaly_config)
    return Token(access_token=create_access_token(user.id))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _user_response(user)
