from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import create_admin
from portal.core.config import get_settings
from portal.core.rbac import (
    AdminPermission,
    AdminRole,
    get_role_permissions,
    has_permission,
)
from portal.core.security import create_access_token
from portal.models.audit_log import AuditLog
from portal.services.audit_log_service import RequestContext
from portal.services.permission import AuthContext, AuthDenial, PermissionService


def _token_for(admin_id: str) -> str:
    return create_access_token({"sub": admin_id})


@pytest.mark.parametrize(
    "token, message",
    [
        (None, "Not authenticated"),
        ("", "Not authenticated"),
        ("not-a-jwt", "Invalid token"),
        (create_access_token({"sub": "someone", "type": "client"}), "Invalid token type"),
        (create_access_token({"type": "admin"}), "Invalid token"),
        (create_access_token({"sub": "missing-admin"}), "Admin not found"),
    ],
)
async def test_missing_or_invalid_principal_is_unauthorized(
    db_session: AsyncSession, token: str | None, message: str
) -> None:
    result = await PermissionService(db_session).check_auth(token, AdminPermission.AUDIT_ACCESS)

    assert isinstance(result, AuthDenial)
    assert result.status_code == 401
    assert result.error_message == message


async def test_disabled_admin_is_forbidden(db_session: AsyncSession) -> None:
    admin = await create_admin(db_session, "former@acme-support.com", is_active=False)

    result = await PermissionService(db_session).check_auth(_token_for(admin.id))

    assert isinstance(result, AuthDenial)
    assert result.status_code == 403


async def test_missing_capability_is_forbidden(db_session: AsyncSession) -> None:
    admin = await create_admin(db_session, "books@acme-support.com", AdminRole.FINANCIAL_ADMIN)

    result = await PermissionService(db_session).check_auth(
        _token_for(admin.id), AdminPermission.CLIENT_IMPERSONATION
    )

    assert isinstance(result, AuthDenial)
    assert result.status_code == 403
    assert result.error_message == "Permission denied: client_impersonation"


async def test_authorized_admin_gets_context(db_session: AsyncSession) -> None:
    admin = await create_admin(db_session, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)

    result = await PermissionService(db_session).check_auth(_token_for(admin.id), "client_impersonation")

    assert isinstance(result, AuthContext)
    assert result.principal.id == admin.id
    assert result.admin_profile is result.principal
    assert "view_clients" in result.permissions
    assert "system_config" not in result.permissions


async def test_no_capability_only_needs_active_principal(db_session: AsyncSession) -> None:
    admin = await create_admin(db_session, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)

    result = await PermissionService(db_session).check_auth(_token_for(admin.id))

    assert isinstance(result, AuthContext)


async def test_email_domain_restriction_is_audited(db_session: AsyncSession, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "admin_allowed_email_domains_raw", "freightops.example, @ops.example")
    admin = await create_admin(db_session, "root@acme-support.com")

    result = await PermissionService(db_session).check_auth(
        _token_for(admin.id),
        request_context=RequestContext(ip_address="203.0.113.50", user_agent="console/1.0"),
    )

    assert isinstance(result, AuthDenial)
    assert result.status_code == 403

    entries = (await db_session.execute(select(AuditLog))).scalars().all()
    assert len(entries) == 1
    assert entries[0].action == "permission_denied"
    assert entries[0].severity == "high"
    assert entries[0].result == "failure"
    assert entries[0].actor_id == admin.id
    assert entries[0].ip_address == "203.0.113.50"


async def test_allowed_email_domain_passes(db_session: AsyncSession, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "admin_allowed_email_domains_raw", "ACME-support.com")
    admin = await create_admin(db_session, "root@acme-support.com")

    result = await PermissionService(db_session).check_auth(_token_for(admin.id))

    assert isinstance(result, AuthContext)


def test_super_admin_holds_every_capability() -> None:
    assert get_role_permissions(AdminRole.SUPER_ADMIN) == {p.value for p in AdminPermission}


@pytest.mark.parametrize(
    "role, permission, expected",
    [
        (AdminRole.OPERATIONS_ADMIN, AdminPermission.CLIENT_IMPERSONATION, True),
        (AdminRole.OPERATIONS_ADMIN, AdminPermission.SYSTEM_CONFIG, False),
        (AdminRole.SUPPORT_ADMIN, AdminPermission.CLIENT_IMPERSONATION, True),
        (AdminRole.SUPPORT_ADMIN, AdminPermission.AUDIT_ACCESS, False),
        (AdminRole.FINANCIAL_ADMIN, AdminPermission.EXPORT_FINANCIAL_DATA, True),
        (AdminRole.FINANCIAL_ADMIN, AdminPermission.CLIENT_IMPERSONATION, False),
        (AdminRole.TECHNICAL_ADMIN, AdminPermission.SECURITY_MONITORING, True),
        (AdminRole.TECHNICAL_ADMIN, AdminPermission.MANAGE_BILLING, False),
    ],
)
def test_role_matrix(role: AdminRole, permission: AdminPermission, expected: bool) -> None:
    assert has_permission(role, permission) is expected


def test_unknown_role_has_no_capabilities() -> None:
    assert get_role_permissions("intern") == set()
