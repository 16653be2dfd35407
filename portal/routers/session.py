"""Admin session timeout status and monitoring."""

import logging

from fastapi import APIRouter, Depends, Query

from portal.api.deps import (
    audit_service,
    ensure_session_active,
    get_current_admin,
    request_context,
    require_permission,
)
from portal.core.errors import NotFoundError
from portal.core.rbac import AdminPermission
from portal.models.audit_log import AuditAction, AuditSeverity
from portal.schemas.session import (
    ForceLogoutResponse,
    SessionConfigResponse,
    SessionMonitorResponse,
    SessionRecordResponse,
    SessionStatusResponse,
)
from portal.services.audit_log_service import AuditLogService, RequestContext
from portal.services.permission import AuthContext
from portal.services.session_timeout import session_tracker

logger = logging.getLogger(__name__)

router = APIRouter()


def _status_for(user_id: str) -> SessionStatusResponse:
    record = session_tracker.get_session(user_id)
    return SessionStatusResponse(
        is_valid=bool(record and record.is_active),
        session=SessionRecordResponse.model_validate(record) if record else None,
        seconds_until_expiry=int(session_tracker.time_until_expiry(user_id).total_seconds()),
        should_show_warning=session_tracker.should_show_warning(user_id),
        config=SessionConfigResponse(**session_tracker.config()),
    )


@router.get("/status", response_model=SessionStatusResponse)
async def get_session_status(auth: AuthContext = Depends(get_current_admin)) -> SessionStatusResponse:
    """Idle-timeout status of the caller's session. Reading it does not extend it."""
    return _status_for(auth.principal.id)


@router.post("/status", response_model=SessionStatusResponse)
async def extend_session(auth: AuthContext = Depends(get_current_admin)) -> SessionStatusResponse:
    """Record activity, resetting the caller's idle timer. An expired session cannot be extended."""
    ensure_session_active(auth)
    session_tracker.record_activity(auth.principal.id, auth.principal.email)
    return _status_for(auth.principal.id)


@router.get("/monitor", response_model=SessionMonitorResponse)
async def monitor_sessions(
    _auth: AuthContext = Depends(require_permission(AdminPermission.SECURITY_MONITORING)),
) -> SessionMonitorResponse:
    """Purge stale records, then list the sessions still active."""
    purged = session_tracker.purge_inactive()
    sessions = session_tracker.active_sessions()
    return SessionMonitorResponse(
        sessions=[SessionRecordResponse.model_validate(s) for s in sessions],
        total_active=len(sessions),
        purged=purged,
        config=SessionConfigResponse(**session_tracker.config()),
    )


@router.delete("/monitor", response_model=ForceLogoutResponse)
async def force_logout(
    user_id: str = Query(..., min_length=1, description="Tracked session to invalidate"),
    auth: AuthContext = Depends(require_permission(AdminPermission.SECURITY_MONITORING)),
    context: RequestContext = Depends(request_context),
    audit: AuditLogService = Depends(audit_service),
) -> ForceLogoutResponse:
    """Force-logout a tracked admin session."""
    if not session_tracker.invalidate_session(user_id):
        raise NotFoundError(f"No tracked session for {user_id}")

    await audit.log_security(
        action=AuditAction.SESSION_INVALIDATED,
        description=f"{auth.principal.email} forced logout of session {user_id}",
        actor_id=auth.principal.id,
        actor_email=auth.principal.email,
        actor_name=auth.principal.full_name,
        severity=AuditSeverity.HIGH,
        request_context=context,
        resource_type="admin_session",
        resource_id=user_id,
    )
    return ForceLogoutResponse(user_id=user_id, message="Session invalidated")
