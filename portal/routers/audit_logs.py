"""
Audit Logs Router - API endpoints for the admin security audit trail.

Provides endpoints for:
- Listing audit logs
- Aggregated statistics
- Exporting audit logs
- Hash-chain verification
- Clearing the log (maintenance configurations only)
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from portal.api.deps import audit_service, request_context, require_permission
from portal.core.config import get_settings
from portal.core.errors import ForbiddenError, ValidationError
from portal.core.rbac import AdminPermission
from portal.models.audit_log import AuditAction, AuditSeverity
from portal.schemas.audit_log import (
    AuditChainVerification,
    AuditClearRequest,
    AuditClearResponse,
    AuditLogFilter,
    AuditLogListResponse,
    AuditStatistics,
)
from portal.services.audit_log_service import AuditLogService, RequestContext
from portal.services.permission import AuthContext
from portal.utils.export import export_response

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()

CLEAR_CONFIRMATION = "CLEAR_ALL_AUDIT_LOGS"


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    service: AuditLogService = Depends(audit_service),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    actor_id: Optional[str] = Query(None, description="Filter by actor ID"),
    action: Optional[List[str]] = Query(None, description="Filter by action"),
    severity: Optional[List[str]] = Query(None, description="Filter by severity"),
    result: Optional[str] = Query(None, description="Filter by result (success/failure)"),
    date_from: Optional[datetime] = Query(None, description="Start date filter"),
    date_to: Optional[datetime] = Query(None, description="End date filter"),
    ip_address: Optional[str] = Query(None, description="Filter by IP address"),
    search: Optional[str] = Query(None, description="Search description, actor email and name"),
    _auth: AuthContext = Depends(require_permission(AdminPermission.AUDIT_ACCESS)),
) -> AuditLogListResponse:
    """List audit logs, newest first."""
    filters = AuditLogFilter(
        actor_id=actor_id,
        action=action,
        severity=severity,
        result=result,
        date_from=date_from,
        date_to=date_to,
        ip_address=ip_address,
        search=search,
    )
    return await service.list_logs(filters=filters, page=page, page_size=page_size)


@router.get("/statistics", response_model=AuditStatistics)
async def get_audit_statistics(
    service: AuditLogService = Depends(audit_service),
    _auth: AuthContext = Depends(require_permission(AdminPermission.AUDIT_ACCESS)),
) -> AuditStatistics:
    return await service.get_statistics()


@router.get("/export")
async def export_audit_logs(
    service: AuditLogService = Depends(audit_service),
    format: Literal["json", "csv"] = Query("json", description="Export format (json or csv)"),
    action: Optional[List[str]] = Query(None),
    severity: Optional[List[str]] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    auth: AuthContext = Depends(require_permission(AdminPermission.EXPORT_AUDIT_LOGS)),
    context: RequestContext = Depends(request_context),
) -> Response:
    """
    Export audit logs as JSON or CSV.

    Returns downloadable file with audit log data.
    """
    filters = AuditLogFilter(action=action, severity=severity, date_from=date_from, date_to=date_to)
    data, filename = await service.export_logs(filters=filters, format=format)

    await service.log_security(
        action=AuditAction.DATA_EXPORTED,
        description=f"{auth.principal.email} exported {len(data)} audit log entries as {format}",
        actor_id=auth.principal.id,
        actor_email=auth.principal.email,
        actor_name=auth.principal.full_name,
        severity=AuditSeverity.MEDIUM,
        request_context=context,
        resource_type="audit_log",
        metadata={"format": format, "records": len(data)},
    )
    return export_response(data, filename, format, key="logs")


@router.get("/verify", response_model=AuditChainVerification)
async def verify_audit_chain(
    service: AuditLogService = Depends(audit_service),
    _auth: AuthContext = Depends(require_permission(AdminPermission.SECURITY_MONITORING)),
) -> AuditChainVerification:
    """Check that no audit entry was edited or removed out of order."""
    return await service.verify_chain()


@router.post("/clear", response_model=AuditClearResponse)
async def clear_audit_logs(
    payload: Optional[AuditClearRequest] = Body(None),
    service: AuditLogService = Depends(audit_service),
    auth: AuthContext = Depends(require_permission(AdminPermission.SYSTEM_CONFIG)),
    context: RequestContext = Depends(request_context),
) -> AuditClearResponse:
    """
    Delete every audit entry.

    Requires ``confirm == "CLEAR_ALL_AUDIT_LOGS"`` and the
    ``audit_clear_enabled`` setting. The clear itself is recorded as a
    critical configuration change before anything is deleted.
    """
    if payload is None or payload.confirm != CLEAR_CONFIRMATION:
        raise ValidationError(f'Confirmation required: set "confirm" to "{CLEAR_CONFIRMATION}"')
    if not settings.audit_clear_enabled:
        raise ForbiddenError("Clearing audit logs is disabled in this environment")

    await service.log_security(
        action=AuditAction.SYSTEM_CONFIG_CHANGED,
        description=f"{auth.principal.email} cleared all audit logs",
        actor_id=auth.principal.id,
        actor_email=auth.principal.email,
        actor_name=auth.principal.full_name,
        severity=AuditSeverity.CRITICAL,
        request_context=context,
        resource_type="audit_log",
        metadata={"operation": "clear_all"},
    )
    deleted = await service.clear_logs()
    logger.warning(f"Audit logs cleared by {auth.principal.email}: {deleted} entries")

    return AuditClearResponse(deleted=deleted, message=f"Deleted {deleted} audit log entries")
