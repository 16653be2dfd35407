"""
Audit Log Model for Security Event Tracking.

Logs all security-relevant admin events:
- Authentication events (login, logout, failed attempts)
- Authorization events (permission denied)
- Impersonation lifecycle (started, ended, expired)
- Data exports and system configuration changes

Entries are append-only and hash-chained through ``previous_hash`` and
``entry_hash``.
"""

import enum

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from portal.models.base import Base


class AuditAction(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    IMPERSONATION_STARTED = "impersonation_started"
    IMPERSONATION_ENDED = "impersonation_ended"
    IMPERSONATION_EXPIRED = "impersonation_expired"
    DATA_EXPORTED = "data_exported"
    SYSTEM_CONFIG_CHANGED = "system_config_changed"
    PERMISSION_DENIED = "permission_denied"
    SESSION_INVALIDATED = "session_invalidated"


class AuditSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditResult(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditLog(Base):
    """
    Security audit log entry.

    ``action``, ``severity`` and ``result`` are stored as plain strings so
    values outside the enums above are kept as given.
    """
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # When
    occurred_at = Column(DateTime, nullable=False, index=True)

    # Who
    actor_id = Column(String, nullable=True, index=True)  # Null for failed logins
    actor_email = Column(String, nullable=True)
    actor_name = Column(String, nullable=True)

    # What
    action = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False, default=AuditSeverity.LOW.value)
    description = Column(Text, nullable=False)
    resource_type = Column(String, nullable=True)  # impersonation_session, audit_log, ...
    resource_id = Column(String, nullable=True)

    # Where
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    # Status
    result = Column(String, nullable=False, default=AuditResult.SUCCESS.value)

    # Additional context
    extra_data = Column("metadata", JSON, nullable=True)  # Named 'metadata' in DB, 'extra_data' in Python

    # Tamper evidence
    previous_hash = Column(String(64), nullable=False, default="")
    entry_hash = Column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_audit_actor_occurred", "actor_id", "occurred_at"),
        Index("idx_audit_action_occurred", "action", "occurred_at"),
    )

    def hash_payload(self) -> dict:
        """Fields covered by ``entry_hash``."""
        return {
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "actor_name": self.actor_name,
            "action": self.action,
            "severity": self.severity,
            "description": self.description,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "result": self.result,
            "metadata": self.extra_data,
        }
