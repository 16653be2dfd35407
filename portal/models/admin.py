"""Admin profile model for platform administrators."""

from sqlalchemy import Boolean, Column, DateTime, Enum, String, func

from portal.core.rbac import AdminRole
from portal.models.base import Base


class AdminProfile(Base):
    """A platform administrator who can sign in to the admin portal."""

    __tablename__ = "admin_profile"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    role = Column(
        Enum(AdminRole, values_callable=lambda roles: [r.value for r in roles], name="adminrole"),
        nullable=False,
        default=AdminRole.SUPPORT_ADMIN,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
