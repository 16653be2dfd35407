"""Admin sign-in and sign-out."""

import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.errors import ForbiddenError, UnauthorizedError
from portal.core.rbac import ROLE_METADATA, get_role_permissions
from portal.core.security import create_access_token, verify_password
from portal.middleware.security import AccountLockoutManager
from portal.models.admin import AdminProfile
from portal.models.audit_log import AuditAction, AuditResult, AuditSeverity
from portal.schemas.auth import AdminProfileResponse, AdminSessionResponse
from portal.services.audit_log_service import AuditLogService, RequestContext
from portal.services.permission import email_domain_allowed
from portal.services.session_timeout import SessionTimeoutTracker, session_tracker
from portal.utils.time import utcnow

logger = logging.getLogger(__name__)


class AdminAuthService:
    def __init__(
        self,
        db: AsyncSession,
        audit: Optional[AuditLogService] = None,
        tracker: SessionTimeoutTracker = session_tracker,
    ) -> None:
        self.db = db
        self.audit = audit or AuditLogService(db)
        self.tracker = tracker

    async def _login_failed(self, email: str, reason: str, context: RequestContext, admin: Optional[AdminProfile] = None) -> None:
        AccountLockoutManager.record_failed_attempt(email)
        await self.audit.log_security(
            action=AuditAction.LOGIN_FAILED,
            description=f"Failed admin login for {email}: {reason}",
            actor_id=admin.id if admin else None,
            actor_email=email,
            severity=AuditSeverity.MEDIUM,
            request_context=context,
            result=AuditResult.FAILURE,
            metadata={"reason": reason},
        )

    async def authenticate(
        self,
        email: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> Tuple[AdminProfile, str]:
        """
        Verify credentials and issue an admin token.

        Raises:
            UnauthorizedError: wrong email/password or a locked account
            ForbiddenError: disabled account or email domain not allowed
        """
        context = context or RequestContext()
        email = email.lower()

        locked, remaining = AccountLockoutManager.is_locked(email)
        if locked:
            logger.warning(f"[AUTH] Login attempt on locked admin account: {email}")
            raise UnauthorizedError(
                "Account temporarily locked after repeated failed attempts",
                details={"retry_after_seconds": remaining},
            )

        result = await self.db.execute(select(AdminProfile).where(AdminProfile.email == email))
        admin = result.scalar_one_or_none()

        if not admin or not verify_password(password, admin.hashed_password):
            await self._login_failed(email, "invalid_credentials", context, admin)
            raise UnauthorizedError("Invalid credentials")
        if not admin.is_active:
            await self._login_failed(email, "account_disabled", context, admin)
            raise ForbiddenError("Account disabled")
        if not email_domain_allowed(admin.email):
            await self.audit.log_security(
                action=AuditAction.PERMISSION_DENIED,
                description=f"Admin login denied for {admin.email}: email domain not allowed",
                actor_id=admin.id,
                actor_email=admin.email,
                actor_name=admin.full_name,
                severity=AuditSeverity.HIGH,
                request_context=context,
                result=AuditResult.FAILURE,
                metadata={"reason": "email_domain_not_allowed"},
            )
            raise ForbiddenError("Admin access is restricted to approved email domains")

        AccountLockoutManager.clear_attempts(email)
        admin.last_login_at = utcnow()
        await self.db.commit()
        await self.db.refresh(admin)

        token = create_access_token({"sub": admin.id, "role": admin.role.value})
        self.tracker.record_activity(admin.id, admin.email)

        await self.audit.log_security(
            action=AuditAction.LOGIN,
            description=f"Admin {admin.email} signed in",
            actor_id=admin.id,
            actor_email=admin.email,
            actor_name=admin.full_name,
            severity=AuditSeverity.LOW,
            request_context=context,
        )
        logger.info(f"[AUTH] Admin signed in: {admin.id}")
        return admin, token

    async def logout(self, admin: AdminProfile, context: Optional[RequestContext] = None) -> None:
        self.tracker.invalidate_session(admin.id)
        await self.audit.log_security(
            action=AuditAction.LOGOUT,
            description=f"Admin {admin.email} signed out",
            actor_id=admin.id,
            actor_email=admin.email,
            actor_name=admin.full_name,
            severity=AuditSeverity.LOW,
            request_context=context,
        )

    @staticmethod
    def build_session(admin: AdminProfile) -> AdminSessionResponse:
        metadata = ROLE_METADATA.get(admin.role, {})
        return AdminSessionResponse(
            admin=AdminProfileResponse.model_validate(admin),
            role_display_name=metadata.get("display_name", str(admin.role)),
            department=metadata.get("department", ""),
            permissions=sorted(get_role_permissions(admin.role)),
        )
