"""
Impersonation Router - admin access to client accounts.

Provides endpoints for:
- Starting and ending impersonation sessions
- Listing the caller's active sessions (sweeps expired ones first)
- Impersonation history and export
- Status lookup for the impersonated dashboard
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from portal.api.deps import impersonation_service, request_context, require_permission
from portal.core.config import get_settings
from portal.core.errors import ConflictError, ForbiddenError, ValidationError
from portal.core.rbac import AdminPermission
from portal.models.audit_log import AuditAction, AuditSeverity
from portal.schemas.impersonation import (
    ActiveImpersonationResponse,
    ActiveImpersonationSummary,
    ImpersonationEndRequest,
    ImpersonationEndResponse,
    ImpersonationHistoryExportRequest,
    ImpersonationHistoryFilter,
    ImpersonationHistoryResponse,
    ImpersonationSessionResponse,
    ImpersonationStartRequest,
    ImpersonationStartResponse,
    ImpersonationStatusResponse,
)
from portal.services.audit_log_service import RequestContext
from portal.services.impersonation import ImpersonationService
from portal.services.permission import AuthContext
from portal.utils.export import export_response

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


@router.post("/start", response_model=ImpersonationStartResponse, status_code=status.HTTP_201_CREATED)
async def start_impersonation(
    payload: ImpersonationStartRequest,
    auth: AuthContext = Depends(require_permission(AdminPermission.CLIENT_IMPERSONATION)),
    context: RequestContext = Depends(request_context),
    service: ImpersonationService = Depends(impersonation_service),
) -> ImpersonationStartResponse:
    """
    Start impersonating a client account.

    Each admin may hold at most ``impersonation_max_active_per_admin``
    active sessions at once (0 disables the limit).
    """
    max_active = settings.impersonation_max_active_per_admin
    if max_active > 0:
        await service.cleanup_expired_sessions()
        active = await service.list_active(admin_id=auth.principal.id)
        if len(active) >= max_active:
            raise ConflictError(
                f"You already have {len(active)} active impersonation sessions. End one before starting another.",
                details={"active_session_ids": [s.id for s in active], "max_active": max_active},
            )

    session = await service.start_impersonation(
        principal=auth.principal,
        target_client_id=payload.target_client_id,
        reason=payload.reason,
        duration_minutes=payload.duration_minutes,
        request_context=context,
    )
    return ImpersonationStartResponse(
        session=ImpersonationSessionResponse.model_validate(session),
        access_token=session.session_token,
        expires_at=session.expires_at,
        message="Impersonation session started successfully",
    )


@router.post("/end", response_model=ImpersonationEndResponse)
async def end_impersonation(
    payload: ImpersonationEndRequest,
    auth: AuthContext = Depends(require_permission(AdminPermission.CLIENT_IMPERSONATION)),
    context: RequestContext = Depends(request_context),
    service: ImpersonationService = Depends(impersonation_service),
) -> ImpersonationEndResponse:
    """End an active session. Admins may only end their own unless they hold security monitoring."""
    if not payload.session_id:
        raise ValidationError("session_id is required")

    session = await service.get_session(payload.session_id)
    if (
        session.admin_id != auth.principal.id
        and AdminPermission.SECURITY_MONITORING.value not in auth.permissions
    ):
        raise ForbiddenError("You can only end your own impersonation sessions")

    result = await service.end_impersonation(
        payload.session_id,
        ended_by=auth.principal,
        reason=payload.reason,
        request_context=context,
    )
    return ImpersonationEndResponse(
        session=ImpersonationSessionResponse.model_validate(result.session),
        duration_minutes=result.duration_minutes,
        message=result.message,
    )


@router.get("/active", response_model=ActiveImpersonationResponse)
async def active_impersonations(
    auth: AuthContext = Depends(require_permission(AdminPermission.CLIENT_IMPERSONATION)),
    service: ImpersonationService = Depends(impersonation_service),
) -> ActiveImpersonationResponse:
    """The caller's active sessions. Expired sessions are swept first."""
    cleaned_up = await service.cleanup_expired_sessions()
    sessions = await service.list_active(admin_id=auth.principal.id)

    warning_cutoff = service.clock() + timedelta(minutes=settings.session_warning_minutes)
    expiring_soon = sum(1 for s in sessions if s.expires_at <= warning_cutoff)

    return ActiveImpersonationResponse(
        sessions=[ImpersonationSessionResponse.model_validate(s) for s in sessions],
        summary=ActiveImpersonationSummary(total_active=len(sessions), expiring_soon=expiring_soon),
        cleaned_up=cleaned_up,
    )


@router.get("/history", response_model=ImpersonationHistoryResponse)
async def impersonation_history(
    auth: AuthContext = Depends(require_permission(AdminPermission.AUDIT_ACCESS)),
    context: RequestContext = Depends(request_context),
    service: ImpersonationService = Depends(impersonation_service),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    admin_id: Optional[str] = Query(None, description="Filter by admin ID"),
    target_client_id: Optional[str] = Query(None, description="Filter by client ID"),
    session_status: Optional[List[str]] = Query(None, alias="status", description="active, ended, expired"),
    date_from: Optional[datetime] = Query(None, description="Sessions started at or after"),
    date_to: Optional[datetime] = Query(None, description="Sessions started at or before"),
    search: Optional[str] = Query(None, description="Search admin email, client ID, reason"),
) -> ImpersonationHistoryResponse:
    """Filtered, paginated impersonation history. Viewing it is audited."""
    filters = ImpersonationHistoryFilter(
        admin_id=admin_id,
        target_client_id=target_client_id,
        status=session_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    history = await service.get_impersonation_history(filters, page=page, page_size=page_size)

    await service.audit.log_security(
        action=AuditAction.DATA_EXPORTED,
        description=f"{auth.principal.email} viewed impersonation history",
        actor_id=auth.principal.id,
        actor_email=auth.principal.email,
        actor_name=auth.principal.full_name,
        severity=AuditSeverity.LOW,
        request_context=context,
        resource_type="impersonation_history",
        metadata={
            "filters": filters.model_dump(mode="json", exclude_none=True),
            "page": page,
            "returned": len(history.items),
        },
    )
    return history


@router.post("/history/export")
async def export_impersonation_history(
    payload: ImpersonationHistoryExportRequest,
    auth: AuthContext = Depends(require_permission(AdminPermission.SYSTEM_CONFIG)),
    context: RequestContext = Depends(request_context),
    service: ImpersonationService = Depends(impersonation_service),
) -> Response:
    """
    Export impersonation history as CSV or JSON.

    IP address and user agent are redacted unless ``include_sensitive_data``.
    """
    filters = ImpersonationHistoryFilter(
        **payload.model_dump(include=set(ImpersonationHistoryFilter.model_fields))
    )
    data, filename = await service.export_history(
        filters,
        include_sensitive_data=payload.include_sensitive_data,
        format=payload.format,
    )

    await service.audit.log_security(
        action=AuditAction.DATA_EXPORTED,
        description=(
            f"{auth.principal.email} exported {len(data)} impersonation sessions as {payload.format}"
        ),
        actor_id=auth.principal.id,
        actor_email=auth.principal.email,
        actor_name=auth.principal.full_name,
        severity=AuditSeverity.HIGH,
        request_context=context,
        resource_type="impersonation_history",
        metadata={
            "format": payload.format,
            "records": len(data),
            "include_sensitive_data": payload.include_sensitive_data,
        },
    )
    return export_response(data, filename, payload.format, key="sessions")


@router.get("/status", response_model=ImpersonationStatusResponse)
async def impersonation_status(
    token: str = Query(..., min_length=1, description="Impersonation access token"),
    service: ImpersonationService = Depends(impersonation_service),
) -> ImpersonationStatusResponse:
    """Status of an impersonation session, looked up by its access token."""
    return await service.get_status_by_token(token)
