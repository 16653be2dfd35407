"""
Audit Log Schemas for API requests/responses.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    """Response schema for a single audit log entry."""
    id: int
    occurred_at: datetime
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_name: Optional[str] = None
    action: str
    severity: str
    description: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    result: str
    metadata: Optional[dict] = Field(None, validation_alias="extra_data")
    entry_hash: str

    model_config = {"from_attributes": True, "populate_by_name": True}


class AuditLogFilter(BaseModel):
    """Filter parameters for querying audit logs."""
    actor_id: Optional[str] = None
    action: Optional[List[str]] = None
    severity: Optional[List[str]] = None
    result: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    ip_address: Optional[str] = None
    search: Optional[str] = None  # description, actor email, actor name


class AuditLogListSummary(BaseModel):
    total: int
    by_severity: Dict[str, int]
    failures: int


class AuditLogListResponse(BaseModel):
    """Paginated list of audit logs."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
    summary: AuditLogListSummary


class TopActor(BaseModel):
    actor_email: Optional[str] = None
    count: int


class AuditStatistics(BaseModel):
    """Aggregates computed from entry timestamps at call time."""
    total: int
    by_action: Dict[str, int]
    by_severity: Dict[str, int]
    by_result: Dict[str, int]
    last_24h: int
    last_7d: int
    last_30d: int
    top_actors: List[TopActor]


class AuditClearRequest(BaseModel):
    confirm: Optional[str] = None


class AuditClearResponse(BaseModel):
    deleted: int
    message: str


class AuditChainVerification(BaseModel):
    valid: bool
    total_entries: int
    broken_at: Optional[int] = None
    message: Optional[str] = None
