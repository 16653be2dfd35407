"""
Audit Log Service for recording and querying admin security events.

Provides methods for:
- Appending hash-chained audit entries (never raises on store failure)
- Listing audit logs with filtering and pagination
- Aggregated statistics computed at call time
- Exporting audit logs
- Verifying the hash chain
- Clearing the log (maintenance configurations only)
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.audit_log import AuditLog, AuditResult, AuditSeverity
from portal.schemas.audit_log import (
    AuditChainVerification,
    AuditLogFilter,
    AuditLogListResponse,
    AuditLogListSummary,
    AuditLogResponse,
    AuditStatistics,
    TopActor,
)
from portal.utils.hashing import generate_chain_hash
from portal.utils.time import utcnow

logger = logging.getLogger(__name__)

EXPORT_LIMIT = 10000

_chain_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def _chain_lock() -> asyncio.Lock:
    """One append lock per running event loop."""
    loop = asyncio.get_running_loop()
    lock = _chain_locks.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _chain_locks[loop] = lock
    return lock


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from. Either field may be missing."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


class AuditLogService:
    """Service for managing audit logs."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def log_security(
        self,
        action: str,
        description: str,
        actor_id: Optional[str] = None,
        actor_email: Optional[str] = None,
        actor_name: Optional[str] = None,
        severity: str = AuditSeverity.LOW,
        request_context: Optional[RequestContext] = None,
        result: str = AuditResult.SUCCESS,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Append one audit entry.

        The entry is written through its own session on the caller's engine,
        so neither a commit nor a failure here touches the caller's unit of
        work. Unknown action/severity/result strings are stored as given. A
        store failure is logged and the caller gets None instead of an
        exception.
        """
        context = request_context or RequestContext()
        try:
            async with _chain_lock(), AsyncSession(self.db.bind, expire_on_commit=False) as audit_db:
                last_hash = await audit_db.scalar(
                    select(AuditLog.entry_hash).order_by(desc(AuditLog.id)).limit(1)
                )
                previous_hash = last_hash or ""

                entry = AuditLog(
                    occurred_at=self.clock(),
                    actor_id=actor_id,
                    actor_email=actor_email,
                    actor_name=actor_name,
                    action=_value(action),
                    severity=_value(severity),
                    description=description,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    result=_value(result),
                    extra_data=metadata,
                    previous_hash=previous_hash,
                )
                entry.entry_hash = generate_chain_hash(entry.hash_payload(), previous_hash)

                audit_db.add(entry)
                await audit_db.commit()
                await audit_db.refresh(entry)
            return entry
        except Exception:
            logger.exception(
                "Failed to write audit log entry",
                extra={"action": _value(action), "actor_id": actor_id},
            )
            return None

    @staticmethod
    def _filter_conditions(filters: Optional[AuditLogFilter]) -> list:
        if not filters:
            return []

        conditions = []
        if filters.actor_id:
            conditions.append(AuditLog.actor_id == filters.actor_id)
        if filters.action:
            conditions.append(AuditLog.action.in_(filters.action))
        if filters.severity:
            conditions.append(AuditLog.severity.in_(filters.severity))
        if filters.result:
            conditions.append(AuditLog.result == filters.result)
        if filters.date_from:
            conditions.append(AuditLog.occurred_at >= filters.date_from)
        if filters.date_to:
            conditions.append(AuditLog.occurred_at <= filters.date_to)
        if filters.ip_address:
            conditions.append(AuditLog.ip_address == filters.ip_address)
        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(
                or_(
                    AuditLog.description.ilike(search_term),
                    AuditLog.actor_email.ilike(search_term),
                    AuditLog.actor_name.ilike(search_term),
                )
            )
        return conditions

    async def list_logs(
        self,
        filters: Optional[AuditLogFilter] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> AuditLogListResponse:
        """
        List audit logs with filtering and pagination.

        The summary covers every matching entry, not just the page.
        """
        conditions = self._filter_conditions(filters)

        total = await self.db.scalar(select(func.count(AuditLog.id)).where(*conditions)) or 0

        severity_rows = await self.db.execute(
            select(AuditLog.severity, func.count(AuditLog.id))
            .where(*conditions)
            .group_by(AuditLog.severity)
        )
        by_severity = {row[0]: row[1] for row in severity_rows.fetchall()}

        failures = await self.db.scalar(
            select(func.count(AuditLog.id)).where(
                *conditions, AuditLog.result == AuditResult.FAILURE.value
            )
        ) or 0

        offset = (page - 1) * page_size
        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(desc(AuditLog.occurred_at), desc(AuditLog.id))
            .offset(offset)
            .limit(page_size)
        )
        logs = result.scalars().all()

        total_pages = (total + page_size - 1) // page_size if total > 0 else 1

        return AuditLogListResponse(
            items=[AuditLogResponse.model_validate(log) for log in logs],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            summary=AuditLogListSummary(total=total, by_severity=by_severity, failures=failures),
        )

    async def get_statistics(self) -> AuditStatistics:
        """Aggregate counts over the whole log, relative to the current time."""
        now = self.clock()

        total = await self.db.scalar(select(func.count(AuditLog.id))) or 0

        async def _grouped(column) -> Dict[str, int]:
            rows = await self.db.execute(
                select(column, func.count(AuditLog.id)).group_by(column)
            )
            return {row[0]: row[1] for row in rows.fetchall()}

        async def _since(delta: timedelta) -> int:
            return await self.db.scalar(
                select(func.count(AuditLog.id)).where(AuditLog.occurred_at >= now - delta)
            ) or 0

        top_rows = await self.db.execute(
            select(AuditLog.actor_email, func.count(AuditLog.id).label("count"))
            .where(AuditLog.actor_email.is_not(None))
            .group_by(AuditLog.actor_email)
            .order_by(desc("count"))
            .limit(5)
        )

        return AuditStatistics(
            total=total,
            by_action=await _grouped(AuditLog.action),
            by_severity=await _grouped(AuditLog.severity),
            by_result=await _grouped(AuditLog.result),
            last_24h=await _since(timedelta(hours=24)),
            last_7d=await _since(timedelta(days=7)),
            last_30d=await _since(timedelta(days=30)),
            top_actors=[TopActor(actor_email=row[0], count=row[1]) for row in top_rows.fetchall()],
        )

    async def clear_logs(self) -> int:
        """
        Delete every audit entry and return how many were removed.

        Callers record the clear itself before calling this. The HTTP layer
        only exposes it when ``audit_clear_enabled`` is set.
        """
        async with _chain_lock():
            count = await self.db.scalar(select(func.count(AuditLog.id))) or 0
            await self.db.execute(delete(AuditLog))
            await self.db.commit()
        logger.warning("Audit log cleared", extra={"deleted": count})
        return count

    async def export_logs(
        self,
        filters: Optional[AuditLogFilter] = None,
        format: str = "json",
    ) -> Tuple[List[dict], str]:
        """
        Export audit logs for download.

        Returns tuple of (data, filename).
        """
        conditions = self._filter_conditions(filters)
        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(desc(AuditLog.occurred_at), desc(AuditLog.id))
            .limit(EXPORT_LIMIT)
        )
        logs = result.scalars().all()

        data = [
            {
                "id": log.id,
                "occurred_at": log.occurred_at.isoformat(),
                "action": log.action,
                "severity": log.severity,
                "result": log.result,
                "actor_id": log.actor_id,
                "actor_email": log.actor_email,
                "actor_name": log.actor_name,
                "description": log.description,
                "resource_type": log.resource_type,
                "resource_id": log.resource_id,
                "ip_address": log.ip_address,
                "user_agent": log.user_agent,
                "entry_hash": log.entry_hash,
            }
            for log in logs
        ]

        timestamp = self.clock().strftime("%Y%m%d_%H%M%S")
        filename = f"audit_logs_{timestamp}.{format}"

        return data, filename

    async def verify_chain(self) -> AuditChainVerification:
        """Recompute every entry hash in insertion order.

        Reports the first entry whose link or content no longer matches.
        """
        result = await self.db.execute(
            select(AuditLog).order_by(AuditLog.id.asc()).execution_options(populate_existing=True)
        )
        entries = result.scalars().all()

        previous_hash = ""
        for entry in entries:
            if entry.previous_hash != previous_hash:
                return AuditChainVerification(
                    valid=False,
                    total_entries=len(entries),
                    broken_at=entry.id,
                    message=f"Chain link broken at entry {entry.id} ({entry.action})",
                )
            expected = generate_chain_hash(entry.hash_payload(), previous_hash)
            if entry.entry_hash != expected:
                return AuditChainVerification(
                    valid=False,
                    total_entries=len(entries),
                    broken_at=entry.id,
                    message=f"Entry {entry.id} ({entry.action}) was modified",
                )
            previous_hash = entry.entry_hash

        return AuditChainVerification(valid=True, total_entries=len(entries))
