import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager, suppress
from pathlib import Path

from dotenv import load_dotenv

# Load the root .env wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from vaultguard import __version__
from vaultguard.admin import admin_router
from vaultguard.api.auth import router as auth_router
from vaultguard.core.config import cors_origins_list, settings
from vaultguard.core.database import check_db, init_db
from vaultguard.core.rate_limit import get_client_ip, limiter
from vaultguard.logging import setup_logging
from vaultguard.models import AuditStatus
from vaultguard.services.audit import create_audit_log
from vaultguard.services.janitor import run_janitor
from vaultguard.services.threat_recorder import threat_recorder

setup_logging(level=settings.log_level)
log = logging.getLogger("vaultguard")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.threat_recorder_async:
        await threat_recorder.start()
    janitor = None
    if settings.janitor_interval_minutes > 0:
        janitor = asyncio.create_task(run_janitor(settings.janitor_interval_minutes), name="threat-janitor")
    log.info("vaultguard started environment=%s version=%s", settings.environment, __version__)
    yield
    if janitor is not None:
        janitor.cancel()
        with suppress(asyncio.CancelledError):
            await janitor
    await threat_recorder.stop()


app = FastAPI(
    title="Vaultguard API",
    description="Password vault with threat detection and adaptive rate limiting",
    version=__version__,
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, headers: dict | None = None) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    create_audit_log(
        "EDGE_RATE_LIMIT",
        "Http",
        status=AuditStatus.BLOCKED,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details={"path": request.url.path, "limit": str(exc.detail)},
    )
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("request validation error path=%s method=%s detail=%s", request.url.path, request.method, errs)
    first = errs[0] if errs else {}
    body = {"error": first.get("msg") or "Invalid request.", "status_code": 422, "detail": jsonable_errors(errs)}
    rid = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


def jsonable_errors(errs: list) -> list:
    return [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(request, exc.status_code, detail, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Decision errors from the threat engine land here: the protected action is denied
    log.exception("unhandled exception path=%s method=%s", request.url.path, request.method)
    return _error_response(request, 500, "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"status": "ok", "database": "ok" if check_db() else "error", "version": __version__}
