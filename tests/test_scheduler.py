from datetime import timedelta

from conftest import FakeClock, create_admin
from portal.background import scheduler
from portal.models.impersonation import ImpersonationSession
from portal.services.impersonation import ImpersonationService
from portal.services.session_timeout import SessionTimeoutTracker
from portal.utils.time import utcnow


async def test_sweep_job_expires_overdue_sessions(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(scheduler, "AsyncSessionFactory", session_factory)
    past = FakeClock(utcnow() - timedelta(hours=2))

    async with session_factory() as session:
        admin = await create_admin(session, "root@acme-support.com")
        service = ImpersonationService(session, clock=past)
        overdue = await service.start_impersonation(admin, "C1", "ticket #1", 30)
        await ImpersonationService(session).start_impersonation(admin, "C2", "ticket #2", 30)

    assert await scheduler.sweep_expired_impersonations() == 1
    assert await scheduler.sweep_expired_impersonations() == 0

    async with session_factory() as session:
        assert (await session.get(ImpersonationSession, overdue.id)).status == "expired"


def test_purge_job_drops_idle_sessions(monkeypatch, clock: FakeClock) -> None:
    tracker = SessionTimeoutTracker(timeout_minutes=30, clock=clock)
    monkeypatch.setattr(scheduler, "session_tracker", tracker)
    tracker.record_activity("admin-1")
    tracker.record_activity("admin-2")

    clock.advance(minutes=31)
    tracker.record_activity("admin-2")

    assert scheduler.purge_idle_admin_sessions() == 1
    assert tracker.get_session("admin-2") is not None
