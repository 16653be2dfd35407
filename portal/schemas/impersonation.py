"""
Impersonation Schemas for API requests/responses.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ImpersonationStartRequest(BaseModel):
    target_client_id: str
    reason: str
    duration_minutes: int = 60


class ImpersonationEndRequest(BaseModel):
    session_id: Optional[str] = None
    reason: Optional[str] = None


class ImpersonationSessionResponse(BaseModel):
    """A single impersonation session, without its access token."""
    id: str
    admin_id: str
    admin_email: str
    admin_name: Optional[str] = None
    target_client_id: str
    reason: str
    duration_minutes: int
    started_at: datetime
    expires_at: datetime
    status: str
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None
    end_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"from_attributes": True}


class ImpersonationStartResponse(BaseModel):
    session: ImpersonationSessionResponse
    access_token: str
    expires_at: datetime
    message: str


class ImpersonationEndResponse(BaseModel):
    session: ImpersonationSessionResponse
    duration_minutes: int
    message: str


class ActiveImpersonationSummary(BaseModel):
    total_active: int
    expiring_soon: int  # within the session warning window


class ActiveImpersonationResponse(BaseModel):
    sessions: List[ImpersonationSessionResponse]
    summary: ActiveImpersonationSummary
    cleaned_up: int


class ImpersonationHistoryFilter(BaseModel):
    """Filter parameters for querying impersonation history."""
    admin_id: Optional[str] = None
    target_client_id: Optional[str] = None
    status: Optional[List[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None  # admin email, client id, reason


class DateRange(BaseModel):
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None


class ImpersonationHistorySummary(BaseModel):
    """Computed over the full filtered set, independent of pagination."""
    total_sessions: int
    active_sessions: int
    ended_sessions: int
    expired_sessions: int
    unique_admins: int
    unique_clients: int
    average_duration_minutes: Optional[float] = None
    date_range: DateRange


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class ImpersonationHistoryResponse(BaseModel):
    items: List[ImpersonationSessionResponse]
    pagination: Pagination
    summary: ImpersonationHistorySummary


class ImpersonationHistoryExportRequest(ImpersonationHistoryFilter):
    format: Literal["csv", "json"] = "csv"
    include_sensitive_data: bool = False


class ImpersonationStatusResponse(BaseModel):
    is_impersonating: bool
    session: Optional[ImpersonationSessionResponse] = None
    remaining_minutes: Optional[int] = None
    message: Optional[str] = Field(default=None)
