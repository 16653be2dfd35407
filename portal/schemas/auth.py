from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr

from portal.core.rbac import AdminRole


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class AdminProfileResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: AdminRole
    is_active: bool
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AdminSessionResponse(BaseModel):
    admin: AdminProfileResponse
    role_display_name: str
    department: str
    permissions: List[str]


class AdminTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    admin: AdminProfileResponse
