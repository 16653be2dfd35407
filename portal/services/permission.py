"""
Permission Service

Authorizes admin requests. ``check_auth`` turns the caller's credentials and
a required capability into either an ``AuthContext`` or an ``AuthDenial``
that carries the HTTP status the denial maps to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Set, Union

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import get_settings
from portal.core.rbac import AdminPermission, get_role_permissions
from portal.core.security import ADMIN_TOKEN_TYPE, decode_access_token
from portal.models.admin import AdminProfile
from portal.models.audit_log import AuditAction, AuditResult, AuditSeverity
from portal.services.audit_log_service import AuditLogService, RequestContext

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    principal: AdminProfile
    permissions: Set[str] = field(default_factory=set)

    @property
    def admin_profile(self) -> AdminProfile:
        return self.principal


@dataclass
class AuthDenial:
    error_message: str
    status_code: int


AuthResult = Union[AuthContext, AuthDenial]


def email_domain_allowed(email: str) -> bool:
    allowed = get_settings().admin_allowed_email_domains
    if not allowed:
        return True
    domain = email.rsplit("@", 1)[-1].lower()
    return domain in allowed


class PermissionService:
    """Checks admin credentials and capabilities."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditLogService] = None) -> None:
        self.db = db
        self.audit = audit or AuditLogService(db)

    async def resolve_principal(self, token: Optional[str]) -> AuthResult:
        """Decode the admin token and load the profile. Only 401 denials come from here."""
        if not token:
            return AuthDenial("Not authenticated", status.HTTP_401_UNAUTHORIZED)

        payload = decode_access_token(token)
        if not payload:
            return AuthDenial("Invalid token", status.HTTP_401_UNAUTHORIZED)
        if payload.get("type") != ADMIN_TOKEN_TYPE:
            return AuthDenial("Invalid token type", status.HTTP_401_UNAUTHORIZED)

        admin_id = payload.get("sub")
        if not admin_id:
            return AuthDenial("Invalid token", status.HTTP_401_UNAUTHORIZED)

        admin = await self.db.get(AdminProfile, admin_id)
        if not admin:
            return AuthDenial("Admin not found", status.HTTP_401_UNAUTHORIZED)

        return AuthContext(principal=admin, permissions=get_role_permissions(admin.role))

    async def check_auth(
        self,
        token: Optional[str],
        required_capability: Optional[AdminPermission | str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> AuthResult:
        """
        Authorize a request.

        Returns:
            AuthContext when the admin may proceed, otherwise AuthDenial with
            401 (no valid principal) or 403 (disabled account, email domain
            not allowed, or missing capability).
        """
        resolved = await self.resolve_principal(token)
        if isinstance(resolved, AuthDenial):
            return resolved

        admin = resolved.principal
        if not admin.is_active:
            return AuthDenial("Account disabled", status.HTTP_403_FORBIDDEN)

        if not email_domain_allowed(admin.email):
            logger.warning("Admin email domain not allowed: %s", admin.email)
            await self.audit.log_security(
                action=AuditAction.PERMISSION_DENIED,
                description=f"Admin access denied for {admin.email}: email domain not allowed",
                actor_id=admin.id,
                actor_email=admin.email,
                actor_name=admin.full_name,
                severity=AuditSeverity.HIGH,
                request_context=request_context,
                result=AuditResult.FAILURE,
                metadata={"reason": "email_domain_not_allowed"},
            )
            return AuthDenial("Admin access is restricted to approved email domains", status.HTTP_403_FORBIDDEN)

        if required_capability is not None:
            capability = (
                required_capability.value
                if isinstance(required_capability, AdminPermission)
                else required_capability
            )
            if capability not in resolved.permissions:
                logger.warning(
                    f"Permission denied: admin={admin.email}, permission={capability}"
                )
                return AuthDenial(f"Permission denied: {capability}", status.HTTP_403_FORBIDDEN)

        return resolved
