"""
Admin Session Timeout Tracker

Keeps the last activity of every authenticated admin (and of every open
impersonation context) in process memory. A record idle for longer than
``session_timeout_minutes`` is treated as expired the next time it is
read; there is no background timer.

Records are lost on restart and are not shared between worker processes.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from portal.core.config import get_settings
from portal.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    user_id: str
    email: Optional[str]
    last_activity_at: datetime
    is_active: bool = True


class SessionTimeoutTracker:
    """In-memory registry of admin sessions and their idle status."""

    def __init__(
        self,
        timeout_minutes: int = 30,
        warning_minutes: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.timeout = timedelta(minutes=timeout_minutes)
        self.warning = timedelta(minutes=warning_minutes)
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def _is_idle(self, record: SessionRecord, now: datetime) -> bool:
        return now - record.last_activity_at >= self.timeout

    def _apply_idle_policy(self, record: SessionRecord, now: datetime) -> None:
        if record.is_active and self._is_idle(record, now):
            record.is_active = False
            logger.info("Session expired after inactivity", extra={"user_id": record.user_id})

    def record_activity(self, user_id: str, email: Optional[str] = None) -> SessionRecord:
        """Create or refresh a session, resetting its idle timer."""
        now = self._clock()
        with self._lock:
            record = self._sessions.get(user_id)
            if record is None:
                record = SessionRecord(user_id=user_id, email=email, last_activity_at=now)
                self._sessions[user_id] = record
            else:
                record.last_activity_at = now
                record.is_active = True
                if email:
                    record.email = email
            return replace(record)

    def get_session(self, user_id: str) -> Optional[SessionRecord]:
        now = self._clock()
        with self._lock:
            record = self._sessions.get(user_id)
            if record is None:
                return None
            self._apply_idle_policy(record, now)
            return replace(record)

    def is_session_valid(self, user_id: str) -> bool:
        record = self.get_session(user_id)
        return bool(record and record.is_active)

    def time_until_expiry(self, user_id: str) -> timedelta:
        record = self.get_session(user_id)
        if record is None or not record.is_active:
            return timedelta(0)
        remaining = record.last_activity_at + self.timeout - self._clock()
        return max(remaining, timedelta(0))

    def should_show_warning(self, user_id: str) -> bool:
        remaining = self.time_until_expiry(user_id)
        return timedelta(0) < remaining <= self.warning

    def invalidate_session(self, user_id: str) -> bool:
        """Mark a session inactive. Returns False when the user is unknown."""
        with self._lock:
            record = self._sessions.get(user_id)
            if record is None:
                return False
            record.is_active = False
        logger.info("Session invalidated", extra={"user_id": user_id})
        return True

    def active_sessions(self) -> List[SessionRecord]:
        now = self._clock()
        with self._lock:
            records = list(self._sessions.values())
            for record in records:
                self._apply_idle_policy(record, now)
            return [replace(r) for r in records if r.is_active]

    def purge_inactive(self) -> int:
        """Drop inactive and idle records. Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [
                user_id
                for user_id, record in self._sessions.items()
                if not record.is_active or self._is_idle(record, now)
            ]
            for user_id in stale:
                del self._sessions[user_id]
        if stale:
            logger.info("Purged inactive admin sessions", extra={"count": len(stale)})
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def config(self) -> Dict[str, int]:
        return {
            "timeout_minutes": int(self.timeout.total_seconds() // 60),
            "warning_minutes": int(self.warning.total_seconds() // 60),
        }


def impersonation_key(session_id: str) -> str:
    """Tracker key for an impersonated client context."""
    return f"impersonation:{session_id}"


_settings = get_settings()

session_tracker = SessionTimeoutTracker(
    timeout_minutes=_settings.session_timeout_minutes,
    warning_minutes=_settings.session_warning_minutes,
)
