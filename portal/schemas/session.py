from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class SessionConfigResponse(BaseModel):
    timeout_minutes: int
    warning_minutes: int


class SessionRecordResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    last_activity_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class SessionStatusResponse(BaseModel):
    is_valid: bool
    session: Optional[SessionRecordResponse] = None
    seconds_until_expiry: int
    should_show_warning: bool
    config: SessionConfigResponse


class SessionMonitorResponse(BaseModel):
    sessions: List[SessionRecordResponse]
    total_active: int
    purged: int
    config: SessionConfigResponse


class ForceLogoutResponse(BaseModel):
    user_id: str
    message: str
