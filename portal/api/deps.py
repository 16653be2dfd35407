import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.db import get_db
from portal.core.errors import UnauthorizedError, error_for_status
from portal.core.rbac import AdminPermission
from portal.middleware.security import get_request_context
from portal.services.audit_log_service import AuditLogService, RequestContext
from portal.services.impersonation import ImpersonationService
from portal.services.permission import AuthContext, AuthDenial, PermissionService
from portal.services.session_timeout import session_tracker

logger = logging.getLogger(__name__)

ADMIN_AUTH_COOKIE_NAME = "portal_admin_token"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/auth/login", auto_error=False)


def get_credentials_token(
    request: Request,
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
) -> Optional[str]:
    """Cookie first, then the bearer header."""
    return request.cookies.get(ADMIN_AUTH_COOKIE_NAME) or token


async def request_context(request: Request) -> RequestContext:
    return get_request_context(request)


async def audit_service(db: AsyncSession = Depends(get_db)) -> AuditLogService:
    return AuditLogService(db)


async def impersonation_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditLogService = Depends(audit_service),
) -> ImpersonationService:
    return ImpersonationService(db, audit=audit)


def ensure_session_active(auth: AuthContext) -> None:
    """
    Reject a principal whose tracked session was invalidated or went idle.

    An admin with no tracked record yet (first request after a restart) is
    let through; only a sign-in revives an inactive record.
    """
    record = session_tracker.get_session(auth.principal.id)
    if record is not None and not record.is_active:
        session_tracker.invalidate_session(auth.principal.id)
        logger.info("Rejected request on expired admin session", extra={"admin_id": auth.principal.id})
        raise UnauthorizedError("Session expired")


async def _authorize(
    db: AsyncSession,
    token: Optional[str],
    context: RequestContext,
    capability: Optional[AdminPermission],
    track_activity: bool = True,
) -> AuthContext:
    result = await PermissionService(db).check_auth(token, capability, context)
    if isinstance(result, AuthDenial):
        raise error_for_status(result.status_code, result.error_message)

    if track_activity:
        ensure_session_active(result)
        session_tracker.record_activity(result.principal.id, result.principal.email)
    return result


async def get_current_admin(
    token: Optional[str] = Depends(get_credentials_token),
    context: RequestContext = Depends(request_context),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Any active admin, regardless of capability. Does not count as activity."""
    return await _authorize(db, token, context, None, track_activity=False)


def require_permission(capability: AdminPermission):
    """
    FastAPI dependency that requires a specific admin capability.

    Usage:
        @router.get("/audit/logs")
        async def list_logs(auth = Depends(require_permission(AdminPermission.AUDIT_ACCESS))):
            ...
    """
    async def dependency(
        token: Optional[str] = Depends(get_credentials_token),
        context: RequestContext = Depends(request_context),
        db: AsyncSession = Depends(get_db),
    ) -> AuthContext:
        return await _authorize(db, token, context, capability)

    return dependency
