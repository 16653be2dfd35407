from __future__ import annotations

from datetime import timedelta

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import ADMIN_PASSWORD, auth_headers, create_admin
from portal.core.rbac import AdminRole
from portal.models.admin import AdminProfile
from portal.models.audit_log import AuditLog
from portal.services.session_timeout import session_tracker
from portal.utils.time import utcnow

AUTH = "/api/admin/auth"
SESSION = "/api/admin/session"
IMPERSONATION = "/api/admin/impersonation"


async def _admin(
    session_factory: async_sessionmaker[AsyncSession],
    email: str,
    role: AdminRole = AdminRole.SUPER_ADMIN,
    is_active: bool = True,
) -> AdminProfile:
    async with session_factory() as session:
        return await create_admin(session, email, role, is_active=is_active)


async def _entries(session_factory: async_sessionmaker[AsyncSession], action: str) -> list[AuditLog]:
    async with session_factory() as session:
        result = await session.execute(select(AuditLog).where(AuditLog.action == action))
        return list(result.scalars().all())


async def test_login_issues_token_and_tracks_session(app_client: AsyncClient, session_factory) -> None:
    admin = await _admin(session_factory, "root@acme-support.com")

    response = await app_client.post(
        f"{AUTH}/login", json={"email": "Root@acme-support.com", "password": ADMIN_PASSWORD}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["access_token"]
    assert body["token_type"] == "bearer"
    assert body["admin"]["id"] == admin.id
    assert body["admin"]["role"] == "super_admin"
    assert body["admin"]["last_login_at"] is not None
    assert "portal_admin_token=" in response.headers["set-cookie"]
    assert "httponly" in response.headers["set-cookie"].lower()

    assert session_tracker.is_session_valid(admin.id)
    logins = await _entries(session_factory, "login")
    assert len(logins) == 1
    assert logins[0].actor_id == admin.id


async def test_wrong_password_is_unauthorized_and_audited(app_client: AsyncClient, session_factory) -> None:
    await _admin(session_factory, "root@acme-support.com")

    response = await app_client.post(
        f"{AUTH}/login", json={"email": "root@acme-support.com", "password": "wrong"}
    )

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "Invalid credentials"}
    failures = await _entries(session_factory, "login_failed")
    assert len(failures) == 1
    assert failures[0].actor_email == "root@acme-support.com"
    assert failures[0].result == "failure"
    assert failures[0].severity == "medium"


async def test_repeated_failures_lock_the_account(app_client: AsyncClient, session_factory) -> None:
    await _admin(session_factory, "root@acme-support.com")
    for _ in range(5):
        await app_client.post(f"{AUTH}/login", json={"email": "root@acme-support.com", "password": "wrong"})

    response = await app_client.post(
        f"{AUTH}/login", json={"email": "root@acme-support.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 401
    assert response.json()["details"]["retry_after_seconds"] > 0


async def test_disabled_admin_cannot_sign_in(app_client: AsyncClient, session_factory) -> None:
    await _admin(session_factory, "former@acme-support.com", is_active=False)

    response = await app_client.post(
        f"{AUTH}/login", json={"email": "former@acme-support.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 403


async def test_session_endpoint_lists_permissions(app_client: AsyncClient, session_factory) -> None:
    admin = await _admin(session_factory, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)

    response = await app_client.get(f"{AUTH}/session", headers=auth_headers(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["admin"]["email"] == "help@acme-support.com"
    assert body["role_display_name"] == "Support Administrator"
    assert body["department"] == "Customer Support"
    assert "client_impersonation" in body["permissions"]
    assert "audit_access" not in body["permissions"]


async def test_logout_invalidates_tracked_session(app_client: AsyncClient, session_factory) -> None:
    admin = await _admin(session_factory, "root@acme-support.com")
    session_tracker.record_activity(admin.id, admin.email)

    response = await app_client.post(f"{AUTH}/logout", headers=auth_headers(admin))

    assert response.status_code == 204
    assert session_tracker.is_session_valid(admin.id) is False
    assert len(await _entries(session_factory, "logout")) == 1


async def test_session_status_read_and_extend(app_client: AsyncClient, session_factory) -> None:
    admin = await _admin(session_factory, "root@acme-support.com")
    headers = auth_headers(admin)

    response = await app_client.get(f"{SESSION}/status", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["is_valid"] is False
    assert body["session"] is None
    assert body["config"] == {"timeout_minutes": 30, "warning_minutes": 5}

    response = await app_client.post(f"{SESSION}/status", headers=headers)
    body = response.json()
    assert body["is_valid"] is True
    assert body["session"]["user_id"] == admin.id
    assert 0 < body["seconds_until_expiry"] <= 30 * 60
    assert body["should_show_warning"] is False


async def test_monitor_and_force_logout(app_client: AsyncClient, session_factory) -> None:
    root = await _admin(session_factory, "root@acme-support.com")
    support = await _admin(session_factory, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)
    await app_client.post(f"{SESSION}/status", headers=auth_headers(support))

    response = await app_client.get(f"{SESSION}/monitor", headers=auth_headers(support))
    assert response.status_code == 403

    response = await app_client.get(f"{SESSION}/monitor", headers=auth_headers(root))
    assert response.status_code == 200
    assert {s["user_id"] for s in response.json()["sessions"]} == {root.id, support.id}

    response = await app_client.delete(
        f"{SESSION}/monitor", params={"user_id": "nobody"}, headers=auth_headers(root)
    )
    assert response.status_code == 404

    response = await app_client.delete(
        f"{SESSION}/monitor", params={"user_id": support.id}, headers=auth_headers(root)
    )
    assert response.status_code == 200
    assert session_tracker.is_session_valid(support.id) is False

    invalidations = await _entries(session_factory, "session_invalidated")
    assert len(invalidations) == 1
    assert invalidations[0].resource_id == support.id


async def test_force_logged_out_admin_is_rejected(app_client: AsyncClient, session_factory) -> None:
    root = await _admin(session_factory, "root@acme-support.com")
    support = await _admin(session_factory, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)

    response = await app_client.get(f"{IMPERSONATION}/active", headers=auth_headers(support))
    assert response.status_code == 200

    await app_client.delete(f"{SESSION}/monitor", params={"user_id": support.id}, headers=auth_headers(root))

    response = await app_client.get(f"{IMPERSONATION}/active", headers=auth_headers(support))
    assert response.status_code == 401
    assert response.json()["message"] == "Session expired"

    response = await app_client.post(f"{SESSION}/status", headers=auth_headers(support))
    assert response.status_code == 401

    response = await app_client.get(f"{SESSION}/status", headers=auth_headers(support))
    assert response.status_code == 200
    assert response.json()["is_valid"] is False


async def test_idle_admin_is_rejected_until_next_login(
    app_client: AsyncClient, session_factory, monkeypatch
) -> None:
    support = await _admin(session_factory, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)
    response = await app_client.get(f"{IMPERSONATION}/active", headers=auth_headers(support))
    assert response.status_code == 200

    monkeypatch.setattr(session_tracker, "_clock", lambda: utcnow() + timedelta(minutes=31))

    response = await app_client.get(f"{IMPERSONATION}/active", headers=auth_headers(support))
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "Session expired"}

    response = await app_client.post(
        f"{AUTH}/login", json={"email": "help@acme-support.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200

    response = await app_client.get(f"{IMPERSONATION}/active", headers=auth_headers(support))
    assert response.status_code == 200
