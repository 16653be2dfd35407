from __future__ import annotations

import csv
import io

from httpx import AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import auth_headers, create_admin
from portal.core.config import get_settings
from portal.core.rbac import AdminRole
from portal.models.admin import AdminProfile
from portal.models.audit_log import AuditAction, AuditLog
from portal.services.audit_log_service import AuditLogService

BASE = "/api/admin/audit"


async def _admin(
    session_factory: async_sessionmaker[AsyncSession], email: str, role: AdminRole = AdminRole.SUPER_ADMIN
) -> AdminProfile:
    async with session_factory() as session:
        return await create_admin(session, email, role)


async def _seed_entries(session_factory: async_sessionmaker[AsyncSession], count: int) -> None:
    async with session_factory() as session:
        service = AuditLogService(session)
        for index in range(count):
            await service.log_security(
                action=AuditAction.LOGIN,
                description=f"seeded login {index}",
                actor_email=f"user{index}@acme-support.com",
            )


async def test_clear_requires_confirmation(app_client: AsyncClient, session_factory) -> None:
    root = await _admin(session_factory, "root@acme-support.com")
    await _seed_entries(session_factory, 3)

    response = await app_client.post(f"{BASE}/clear", json={}, headers=auth_headers(root))
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = await app_client.post(
        f"{BASE}/clear", json={"confirm": "yes please"}, headers=auth_headers(root)
    )
    assert response.status_code == 400

    stats = await app_client.get(f"{BASE}/statistics", headers=auth_headers(root))
    assert stats.json()["total"] == 3


async def test_clear_with_confirmation(app_client: AsyncClient, session_factory) -> None:
    root = await _admin(session_factory, "root@acme-support.com")
    await _seed_entries(session_factory, 3)

    response = await app_client.post(
        f"{BASE}/clear", json={"confirm": "CLEAR_ALL_AUDIT_LOGS"}, headers=auth_headers(root)
    )
    assert response.status_code == 200
    assert response.json()["deleted"] == 4

    stats = await app_client.get(f"{BASE}/statistics", headers=auth_headers(root))
    assert stats.json()["total"] == 0


async def test_clear_disabled_by_configuration(app_client: AsyncClient, session_factory, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "audit_clear_enabled", False)
    root = await _admin(session_factory, "root@acme-support.com")
    await _seed_entries(session_factory, 2)

    response = await app_client.post(
        f"{BASE}/clear", json={"confirm": "CLEAR_ALL_AUDIT_LOGS"}, headers=auth_headers(root)
    )
    assert response.status_code == 403

    stats = await app_client.get(f"{BASE}/statistics", headers=auth_headers(root))
    assert stats.json()["total"] == 2


async def test_clear_requires_system_config(app_client: AsyncClient, session_factory) -> None:
    ops = await _admin(session_factory, "ops@acme-support.com", AdminRole.OPERATIONS_ADMIN)

    response = await app_client.post(
        f"{BASE}/clear", json={"confirm": "CLEAR_ALL_AUDIT_LOGS"}, headers=auth_headers(ops)
    )
    assert response.status_code == 403


async def test_verify_reports_tampering(app_client: AsyncClient, session_factory) -> None:
    tech = await _admin(session_factory, "tech@acme-support.com", AdminRole.TECHNICAL_ADMIN)
    await _seed_entries(session_factory, 3)

    response = await app_client.get(f"{BASE}/verify", headers=auth_headers(tech))
    assert response.status_code == 200
    assert response.json() == {"valid": True, "total_entries": 3, "broken_at": None, "message": None}

    async with session_factory() as session:
        await session.execute(update(AuditLog).where(AuditLog.id == 2).values(actor_email="someone@else.com"))
        await session.commit()

    body = (await app_client.get(f"{BASE}/verify", headers=auth_headers(tech))).json()
    assert body["valid"] is False
    assert body["broken_at"] == 2


async def test_list_logs(app_client: AsyncClient, session_factory) -> None:
    ops = await _admin(session_factory, "ops@acme-support.com", AdminRole.OPERATIONS_ADMIN)
    await _seed_entries(session_factory, 3)

    response = await app_client.get(
        f"{BASE}/logs", params={"page_size": 2, "action": "login"}, headers=auth_headers(ops)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert body["items"][0]["description"] == "seeded login 2"
    assert body["summary"]["by_severity"] == {"low": 3}

    support = await _admin(session_factory, "help@acme-support.com", AdminRole.SUPPORT_ADMIN)
    response = await app_client.get(f"{BASE}/logs", headers=auth_headers(support))
    assert response.status_code == 403


async def test_export_csv_is_audited(app_client: AsyncClient, session_factory) -> None:
    root = await _admin(session_factory, "root@acme-support.com")
    await _seed_entries(session_factory, 2)

    response = await app_client.get(f"{BASE}/export", params={"format": "csv"}, headers=auth_headers(root))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")

    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert [row["action"] for row in rows] == ["login", "login"]

    response = await app_client.get(
        f"{BASE}/logs", params={"action": "data_exported"}, headers=auth_headers(root)
    )
    assert response.json()["total"] == 1
