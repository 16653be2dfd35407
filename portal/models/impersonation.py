"""Impersonation session model for admin access to client accounts."""

import enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from portal.models.base import Base


class ImpersonationStatus(str, enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"
    EXPIRED = "expired"


class ImpersonationSession(Base):
    """Track when admins act as a client account.

    A row leaves ``active`` exactly once, either through an explicit end or
    through the expiry sweep. Rows are never deleted.
    """

    __tablename__ = "impersonation_session"

    id = Column(String, primary_key=True)

    # Who impersonated
    admin_id = Column(String, nullable=False, index=True)
    admin_email = Column(String, nullable=False)
    admin_name = Column(String, nullable=True)

    # Which client
    target_client_id = Column(String, nullable=False, index=True)

    # Session details
    session_token = Column(String, nullable=False, unique=True, index=True, comment="Token for the impersonated dashboard")
    reason = Column(Text, nullable=False, comment="Why impersonation was needed (support ticket #, etc.)")
    duration_minutes = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True, comment="Fixed at creation, never extended")

    status = Column(String, nullable=False, default=ImpersonationStatus.ACTIVE.value, index=True)
    ended_at = Column(DateTime, nullable=True)
    ended_by = Column(String, nullable=True, comment="Admin id, or 'system' for the expiry sweep")
    end_reason = Column(Text, nullable=True)

    # Request context
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_impersonation_status_expires", "status", "expires_at"),
        Index("idx_impersonation_admin_status", "admin_id", "status"),
    )
