"""SQLAlchemy models for the admin portal."""

from portal.models.admin import AdminProfile  # noqa: F401
from portal.models.audit_log import AuditAction, AuditLog, AuditResult, AuditSeverity  # noqa: F401
from portal.models.impersonation import ImpersonationSession, ImpersonationStatus  # noqa: F401
