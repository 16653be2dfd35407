"""
Impersonation Service

Client impersonation for support:
- Start impersonation session
- End impersonation session
- Sweep expired sessions
- Impersonation history with summary and export
- Status lookup by session token

A session leaves ``active`` exactly once. Every transition is a conditional
UPDATE on ``status = 'active'`` so concurrent callers cannot both win.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import desc, distinct, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import get_settings
from portal.core.errors import ConflictError, NotFoundError, ValidationError
from portal.models.admin import AdminProfile
from portal.models.audit_log import AuditAction, AuditSeverity
from portal.models.impersonation import ImpersonationSession, ImpersonationStatus
from portal.schemas.impersonation import (
    DateRange,
    ImpersonationHistoryFilter,
    ImpersonationHistoryResponse,
    ImpersonationHistorySummary,
    ImpersonationSessionResponse,
    ImpersonationStatusResponse,
    Pagination,
)
from portal.services.audit_log_service import AuditLogService, RequestContext
from portal.services.session_timeout import SessionTimeoutTracker, impersonation_key, session_tracker
from portal.utils.time import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
EXPIRED_REASON = "Session expired"
DEFAULT_END_REASON = "Manual termination by admin"
RESOURCE_TYPE = "impersonation_session"

ACTIVE = ImpersonationStatus.ACTIVE.value


@dataclass
class ImpersonationEndResult:
    session: ImpersonationSession
    message: str
    duration_minutes: int


class ImpersonationService:
    """Owns the lifecycle of impersonation sessions."""

    def __init__(
        self,
        db: AsyncSession,
        audit: Optional[AuditLogService] = None,
        tracker: SessionTimeoutTracker = session_tracker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.clock = clock
        self.audit = audit or AuditLogService(db, clock=clock)
        self.tracker = tracker
        self.settings = get_settings()

    def _validate_start(self, target_client_id: str, reason: str, duration_minutes: int) -> None:
        if not target_client_id or not target_client_id.strip():
            raise ValidationError("target_client_id is required")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to impersonate a client")

        low = self.settings.impersonation_min_duration_minutes
        high = self.settings.impersonation_max_duration_minutes
        if not isinstance(duration_minutes, int) or not low <= duration_minutes <= high:
            raise ValidationError(
                f"duration_minutes must be between {low} and {high}",
                details={"duration_minutes": duration_minutes},
            )

    async def start_impersonation(
        self,
        principal: AdminProfile,
        target_client_id: str,
        reason: str,
        duration_minutes: Optional[int] = None,
        request_context: Optional[RequestContext] = None,
    ) -> ImpersonationSession:
        """
        Start an impersonation session.

        Permission checks happen before this is called. No limit on concurrent
        sessions is applied here.

        Args:
            principal: Admin starting the session
            target_client_id: Client account to impersonate
            reason: Justification (support ticket #, etc.)
            duration_minutes: Session length, fixed at creation
            request_context: IP address and user agent of the admin

        Returns:
            ImpersonationSession: the new active session
        """
        if duration_minutes is None:
            duration_minutes = self.settings.impersonation_default_duration_minutes
        self._validate_start(target_client_id, reason, duration_minutes)
        context = request_context or RequestContext()

        now = self.clock()
        session = ImpersonationSession(
            id=str(uuid4()),
            admin_id=principal.id,
            admin_email=principal.email,
            admin_name=principal.full_name,
            target_client_id=target_client_id.strip(),
            session_token=secrets.token_urlsafe(32),
            reason=reason.strip(),
            duration_minutes=duration_minutes,
            started_at=now,
            expires_at=now + timedelta(minutes=duration_minutes),
            status=ACTIVE,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)

        logger.info(
            "Impersonation started",
            extra={
                "session_id": session.id,
                "admin_id": principal.id,
                "target_client_id": session.target_client_id,
                "duration_minutes": duration_minutes,
            },
        )

        await self.audit.log_security(
            action=AuditAction.IMPERSONATION_STARTED,
            description=(
                f"{principal.email} started impersonating client {session.target_client_id} "
                f"for {duration_minutes} minutes: {session.reason}"
            ),
            actor_id=principal.id,
            actor_email=principal.email,
            actor_name=principal.full_name,
            severity=AuditSeverity.HIGH,
            request_context=context,
            resource_type=RESOURCE_TYPE,
            resource_id=session.id,
            metadata={
                "target_client_id": session.target_client_id,
                "duration_minutes": duration_minutes,
                "expires_at": session.expires_at.isoformat(),
            },
        )
        self.tracker.record_activity(impersonation_key(session.id), principal.email)

        return session

    async def get_session(self, session_id: str) -> ImpersonationSession:
        session = await self.db.get(ImpersonationSession, session_id, populate_existing=True)
        if session is None:
            raise NotFoundError(f"Impersonation session {session_id} not found")
        return session

    async def end_impersonation(
        self,
        session_id: str,
        ended_by: AdminProfile,
        reason: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> ImpersonationEndResult:
        """
        End an active impersonation session.

        Raises:
            NotFoundError: unknown session id
            ConflictError: the session already ended or expired
        """
        end_reason = (reason or "").strip() or DEFAULT_END_REASON
        now = self.clock()

        result = await self.db.execute(
            update(ImpersonationSession)
            .where(
                ImpersonationSession.id == session_id,
                ImpersonationSession.status == ACTIVE,
            )
            .values(
                status=ImpersonationStatus.ENDED.value,
                ended_at=now,
                ended_by=ended_by.id,
                end_reason=end_reason,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            # Lost the transition: either the id is unknown or the session is terminal
            session = await self.get_session(session_id)
            raise ConflictError(
                f"Impersonation session is already {session.status}",
                details={"session_id": session_id, "status": session.status},
            )

        session = await self.get_session(session_id)
        duration = int((session.ended_at - session.started_at).total_seconds() // 60)

        logger.info(
            "Impersonation ended",
            extra={"session_id": session_id, "ended_by": ended_by.id, "duration_minutes": duration},
        )

        await self.audit.log_security(
            action=AuditAction.IMPERSONATION_ENDED,
            description=(
                f"{ended_by.email} ended impersonation of client {session.target_client_id} "
                f"after {duration} minutes: {end_reason}"
            ),
            actor_id=ended_by.id,
            actor_email=ended_by.email,
            actor_name=ended_by.full_name,
            severity=AuditSeverity.MEDIUM,
            request_context=request_context,
            resource_type=RESOURCE_TYPE,
            resource_id=session.id,
            metadata={
                "target_client_id": session.target_client_id,
                "started_by": session.admin_id,
                "duration_minutes": duration,
            },
        )
        self.tracker.invalidate_session(impersonation_key(session.id))

        return ImpersonationEndResult(
            session=session,
            message="Impersonation session ended successfully",
            duration_minutes=duration,
        )

    async def cleanup_expired_sessions(self) -> int:
        """
        Move every active session past ``expires_at`` to ``expired``.

        Safe to call concurrently and repeatedly; a session another caller
        already closed is skipped. Returns the number of sessions this call
        expired.
        """
        now = self.clock()
        result = await self.db.execute(
            select(ImpersonationSession.id).where(
                ImpersonationSession.status == ACTIVE,
                ImpersonationSession.expires_at < now,
            )
        )
        candidate_ids = result.scalars().all()

        expired = 0
        for session_id in candidate_ids:
            update_result = await self.db.execute(
                update(ImpersonationSession)
                .where(
                    ImpersonationSession.id == session_id,
                    ImpersonationSession.status == ACTIVE,
                )
                .values(
                    status=ImpersonationStatus.EXPIRED.value,
                    ended_at=now,
                    ended_by=SYSTEM_ACTOR,
                    end_reason=EXPIRED_REASON,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            if update_result.rowcount == 0:
                continue

            expired += 1
            session = await self.get_session(session_id)
            await self.audit.log_security(
                action=AuditAction.IMPERSONATION_EXPIRED,
                description=(
                    f"Impersonation of client {session.target_client_id} by "
                    f"{session.admin_email} expired"
                ),
                actor_id=SYSTEM_ACTOR,
                actor_name="System",
                severity=AuditSeverity.MEDIUM,
                resource_type=RESOURCE_TYPE,
                resource_id=session.id,
                metadata={
                    "admin_id": session.admin_id,
                    "target_client_id": session.target_client_id,
                    "expires_at": session.expires_at.isoformat(),
                },
            )
            self.tracker.invalidate_session(impersonation_key(session.id))

        if expired:
            logger.info("Expired impersonation sessions", extra={"count": expired})
        return expired

    async def list_active(self, admin_id: Optional[str] = None) -> List[ImpersonationSession]:
        query = select(ImpersonationSession).where(ImpersonationSession.status == ACTIVE)
        if admin_id:
            query = query.where(ImpersonationSession.admin_id == admin_id)
        query = query.order_by(desc(ImpersonationSession.started_at))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _history_conditions(filters: Optional[ImpersonationHistoryFilter]) -> list:
        if not filters:
            return []

        conditions = []
        if filters.admin_id:
            conditions.append(ImpersonationSession.admin_id == filters.admin_id)
        if filters.target_client_id:
            conditions.append(ImpersonationSession.target_client_id == filters.target_client_id)
        if filters.status:
            conditions.append(ImpersonationSession.status.in_(filters.status))
        if filters.date_from:
            conditions.append(ImpersonationSession.started_at >= filters.date_from)
        if filters.date_to:
            conditions.append(ImpersonationSession.started_at <= filters.date_to)
        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(
                or_(
                    ImpersonationSession.admin_email.ilike(search_term),
                    ImpersonationSession.target_client_id.ilike(search_term),
                    ImpersonationSession.reason.ilike(search_term),
                )
            )
        return conditions

    async def _history_summary(self, conditions: list) -> ImpersonationHistorySummary:
        status_rows = await self.db.execute(
            select(ImpersonationSession.status, func.count(ImpersonationSession.id))
            .where(*conditions)
            .group_by(ImpersonationSession.status)
        )
        by_status = {row[0]: row[1] for row in status_rows.fetchall()}

        aggregate = await self.db.execute(
            select(
                func.count(ImpersonationSession.id),
                func.count(distinct(ImpersonationSession.admin_id)),
                func.count(distinct(ImpersonationSession.target_client_id)),
                func.min(ImpersonationSession.started_at),
                func.max(ImpersonationSession.started_at),
            ).where(*conditions)
        )
        total, unique_admins, unique_clients, earliest, latest = aggregate.one()

        closed = await self.db.execute(
            select(ImpersonationSession.started_at, ImpersonationSession.ended_at).where(
                *conditions, ImpersonationSession.ended_at.is_not(None)
            )
        )
        durations = [
            (ended_at - started_at).total_seconds() / 60 for started_at, ended_at in closed.all()
        ]
        average = round(sum(durations) / len(durations), 2) if durations else None

        return ImpersonationHistorySummary(
            total_sessions=total or 0,
            active_sessions=by_status.get(ACTIVE, 0),
            ended_sessions=by_status.get(ImpersonationStatus.ENDED.value, 0),
            expired_sessions=by_status.get(ImpersonationStatus.EXPIRED.value, 0),
            unique_admins=unique_admins or 0,
            unique_clients=unique_clients or 0,
            average_duration_minutes=average,
            date_range=DateRange(earliest=earliest, latest=latest),
        )

    async def get_impersonation_history(
        self,
        filters: Optional[ImpersonationHistoryFilter] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> ImpersonationHistoryResponse:
        """
        Paginated impersonation history, newest first.

        The summary is computed over the whole filtered set and does not
        depend on ``page`` or ``page_size``.
        """
        conditions = self._history_conditions(filters)
        summary = await self._history_summary(conditions)

        offset = (page - 1) * page_size
        result = await self.db.execute(
            select(ImpersonationSession)
            .where(*conditions)
            .order_by(desc(ImpersonationSession.started_at))
            .offset(offset)
            .limit(page_size)
        )
        sessions = result.scalars().all()

        total = summary.total_sessions
        total_pages = (total + page_size - 1) // page_size if total > 0 else 1

        return ImpersonationHistoryResponse(
            items=[ImpersonationSessionResponse.model_validate(s) for s in sessions],
            pagination=Pagination(page=page, page_size=page_size, total=total, total_pages=total_pages),
            summary=summary,
        )

    async def export_history(
        self,
        filters: Optional[ImpersonationHistoryFilter] = None,
        include_sensitive_data: bool = False,
        format: str = "csv",
    ) -> Tuple[List[dict], str]:
        """
        Export impersonation history for download.

        IP address and user agent are redacted unless explicitly requested.
        Returns tuple of (data, filename).
        """
        conditions = self._history_conditions(filters)
        result = await self.db.execute(
            select(ImpersonationSession)
            .where(*conditions)
            .order_by(desc(ImpersonationSession.started_at))
        )
        sessions = result.scalars().all()

        data = []
        for session in sessions:
            duration = None
            if session.ended_at:
                duration = int((session.ended_at - session.started_at).total_seconds() // 60)
            data.append({
                "session_id": session.id,
                "admin_id": session.admin_id,
                "admin_email": session.admin_email,
                "admin_name": session.admin_name,
                "target_client_id": session.target_client_id,
                "reason": session.reason,
                "status": session.status,
                "started_at": session.started_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "ended_at": session.ended_at.isoformat() if session.ended_at else None,
                "ended_by": session.ended_by,
                "end_reason": session.end_reason,
                "duration_minutes": duration,
                "ip_address": session.ip_address if include_sensitive_data else "[REDACTED]",
                "user_agent": session.user_agent if include_sensitive_data else "[REDACTED]",
            })

        timestamp = self.clock().strftime("%Y%m%d_%H%M%S")
        filename = f"impersonation_history_{timestamp}.{format}"

        return data, filename

    async def get_status_by_token(self, token: str) -> ImpersonationStatusResponse:
        """
        Look up an impersonation session by its access token.

        Runs the expiry sweep first, so an overdue session is reported as
        ``expired`` only after the sweep has recorded it.
        """
        await self.cleanup_expired_sessions()

        result = await self.db.execute(
            select(ImpersonationSession).where(ImpersonationSession.session_token == token)
        )
        session = result.scalar_one_or_none()
        if session is None:
            return ImpersonationStatusResponse(
                is_impersonating=False, message="Impersonation session not found"
            )

        await self.db.refresh(session)
        payload = ImpersonationSessionResponse.model_validate(session)
        if session.status != ACTIVE:
            return ImpersonationStatusResponse(
                is_impersonating=False,
                session=payload,
                message=f"Impersonation session {session.status}",
            )

        self.tracker.record_activity(impersonation_key(session.id), session.admin_email)
        remaining = max(0, math.ceil((session.expires_at - self.clock()).total_seconds() / 60))
        return ImpersonationStatusResponse(
            is_impersonating=True,
            session=payload,
            remaining_minutes=remaining,
        )
