"""Admin API under /admin, X-Admin-Secret protected."""
from fastapi import APIRouter, Depends

from vaultguard.admin.routers import security
from vaultguard.api.deps import rate_limited, require_admin

admin_router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(rate_limited("API"))],
)

admin_router.include_router(security.router, prefix="/security", tags=["admin-security"])
