from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import FakeClock
from portal.models.audit_log import AuditAction, AuditLog, AuditSeverity
from portal.schemas.audit_log import AuditLogFilter
from portal.services.audit_log_service import AuditLogService, RequestContext


def _service(db_session: AsyncSession, clock: FakeClock) -> AuditLogService:
    return AuditLogService(db_session, clock=clock)


async def test_unknown_action_and_severity_are_stored_as_given(
    db_session: AsyncSession, clock: FakeClock
) -> None:
    service = _service(db_session, clock)
    entry = await service.log_security(
        action="custom_event",
        description="Something new",
        severity="urgent",
        result="partial",
    )

    assert entry is not None
    assert entry.action == "custom_event"
    assert entry.severity == "urgent"
    assert entry.result == "partial"
    assert entry.ip_address is None
    assert entry.previous_hash == ""
    assert len(entry.entry_hash) == 64


async def test_request_context_is_recorded(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)
    entry = await service.log_security(
        action=AuditAction.LOGIN,
        description="signed in",
        actor_id="admin-1",
        actor_email="root@acme-support.com",
        request_context=RequestContext(ip_address="192.0.2.10", user_agent="console/3.1"),
        metadata={"attempt": 1},
    )

    assert entry.action == "login"
    assert entry.severity == "low"
    assert entry.result == "success"
    assert entry.ip_address == "192.0.2.10"
    assert entry.user_agent == "console/3.1"
    assert entry.extra_data == {"attempt": 1}
    assert entry.occurred_at == clock.now


async def test_store_failure_is_swallowed(db_session: AsyncSession, clock: FakeClock, monkeypatch) -> None:
    service = _service(db_session, clock)

    async def _broken_commit(self) -> None:
        raise SQLAlchemyError("database is unavailable")

    monkeypatch.setattr(AsyncSession, "commit", _broken_commit)
    assert await service.log_security(action=AuditAction.LOGOUT, description="lost") is None

    monkeypatch.undo()
    stats = await service.get_statistics()
    assert stats.total == 0

    assert await service.log_security(action=AuditAction.LOGOUT, description="kept") is not None


async def test_statistics_windows_and_totals(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)

    await service.log_security(
        action=AuditAction.LOGIN, description="old", actor_email="a@acme-support.com"
    )
    clock.advance(days=10)
    await service.log_security(
        action=AuditAction.LOGIN_FAILED,
        description="week",
        actor_email="b@acme-support.com",
        severity=AuditSeverity.MEDIUM,
        result="failure",
    )
    clock.advance(days=5)
    await service.log_security(
        action=AuditAction.LOGIN, description="today", actor_email="a@acme-support.com"
    )
    clock.advance(hours=1)

    stats = await service.get_statistics()
    assert stats.total == 3
    assert stats.by_action == {"login": 2, "login_failed": 1}
    assert stats.by_severity == {"low": 2, "medium": 1}
    assert stats.by_result == {"success": 2, "failure": 1}
    assert stats.last_24h == 1
    assert stats.last_7d == 2
    assert stats.last_30d == 3
    assert stats.top_actors[0].actor_email == "a@acme-support.com"
    assert stats.top_actors[0].count == 2


async def test_total_counts_entries_since_last_clear(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)
    for index in range(4):
        await service.log_security(action=AuditAction.DATA_EXPORTED, description=f"export {index}")

    assert await service.clear_logs() == 4
    assert (await service.get_statistics()).total == 0

    first = await service.log_security(action=AuditAction.LOGIN, description="after clear")
    await service.log_security(action=AuditAction.LOGOUT, description="after clear")
    assert first.previous_hash == ""
    assert (await service.get_statistics()).total == 2


async def test_chain_verification_detects_edits(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)
    entries = []
    for index in range(3):
        entries.append(await service.log_security(action=AuditAction.LOGIN, description=f"entry {index}"))
        clock.advance(seconds=30)

    assert entries[1].previous_hash == entries[0].entry_hash
    verification = await service.verify_chain()
    assert verification.valid is True
    assert verification.total_entries == 3

    await db_session.execute(
        update(AuditLog).where(AuditLog.id == entries[1].id).values(description="rewritten")
    )
    await db_session.commit()

    verification = await service.verify_chain()
    assert verification.valid is False
    assert verification.broken_at == entries[1].id


async def test_list_logs_filters_and_summary(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)
    await service.log_security(
        action=AuditAction.IMPERSONATION_STARTED,
        description="started impersonating C1",
        actor_id="admin-1",
        severity=AuditSeverity.HIGH,
    )
    clock.advance(minutes=1)
    await service.log_security(
        action=AuditAction.LOGIN_FAILED,
        description="bad password",
        actor_email="intruder@acme-support.com",
        severity=AuditSeverity.MEDIUM,
        result="failure",
    )
    clock.advance(minutes=1)
    await service.log_security(action=AuditAction.LOGIN, description="signed in", actor_id="admin-1")

    everything = await service.list_logs(page_size=2)
    assert everything.total == 3
    assert everything.total_pages == 2
    assert [item.action for item in everything.items] == ["login", "login_failed"]
    assert everything.summary.failures == 1
    assert everything.summary.by_severity == {"high": 1, "medium": 1, "low": 1}

    by_actor = await service.list_logs(AuditLogFilter(actor_id="admin-1"))
    assert by_actor.total == 2

    high = await service.list_logs(AuditLogFilter(severity=["high", "critical"]))
    assert [item.action for item in high.items] == ["impersonation_started"]

    searched = await service.list_logs(AuditLogFilter(search="intruder"))
    assert searched.total == 1


async def test_export_logs(db_session: AsyncSession, clock: FakeClock) -> None:
    service = _service(db_session, clock)
    await service.log_security(action=AuditAction.LOGIN, description="signed in")
    await service.log_security(action=AuditAction.LOGOUT, description="signed out")

    data, filename = await service.export_logs(AuditLogFilter(action=["logout"]), format="csv")
    assert [row["action"] for row in data] == ["logout"]
    assert filename == "audit_logs_20260302_090000.csv"


def test_known_actions_are_the_ones_the_portal_writes() -> None:
    assert {action.value for action in AuditAction} == {
        "login",
        "logout",
        "login_failed",
        "impersonation_started",
        "impersonation_ended",
        "impersonation_expired",
        "data_exported",
        "system_config_changed",
        "permission_denied",
        "session_invalidated",
    }
