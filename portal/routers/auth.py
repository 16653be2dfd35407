import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import ADMIN_AUTH_COOKIE_NAME, get_current_admin, request_context
from portal.core.config import get_settings
from portal.core.db import get_db
from portal.middleware.security import limiter
from portal.schemas.auth import AdminLoginRequest, AdminProfileResponse, AdminSessionResponse, AdminTokenResponse
from portal.services.audit_log_service import RequestContext
from portal.services.auth import AdminAuthService
from portal.services.permission import AuthContext

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


def set_admin_auth_cookie(response: Response, token: str) -> None:
    """Set admin authentication cookie with secure settings."""
    response.set_cookie(
        key=ADMIN_AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.environment != "development",  # HTTPS only in production
        samesite="strict",
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )


def clear_admin_auth_cookie(response: Response) -> None:
    response.delete_cookie(ADMIN_AUTH_COOKIE_NAME, path="/")


@router.post("/login", response_model=AdminTokenResponse)
@limiter.limit(settings.login_rate_limit)
async def admin_login(
    request: Request,
    payload: AdminLoginRequest,
    response: Response,
    context: RequestContext = Depends(request_context),
    db: AsyncSession = Depends(get_db),
) -> AdminTokenResponse:
    """
    Sign in to the admin portal.

    Rate limited per client IP. Accounts lock after repeated failures.
    """
    service = AdminAuthService(db)
    admin, token = await service.authenticate(payload.email, payload.password, context)
    set_admin_auth_cookie(response, token)
    return AdminTokenResponse(access_token=token, admin=AdminProfileResponse.model_validate(admin))


@router.get("/session", response_model=AdminSessionResponse)
async def admin_session(auth: AuthContext = Depends(get_current_admin)) -> AdminSessionResponse:
    return AdminAuthService.build_session(auth.principal)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def admin_logout(
    response: Response,
    auth: AuthContext = Depends(get_current_admin),
    context: RequestContext = Depends(request_context),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Sign out: invalidate the tracked session and clear the cookie."""
    await AdminAuthService(db).logout(auth.principal, context)
    clear_admin_auth_cookie(response)
