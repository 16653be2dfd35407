"""Admin profiles, impersonation sessions and the audit log

Revision ID: 20261017_000001
Revises: 
Create Date: 2026-10-17 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ADMIN_ROLES = ("super_admin", "operations_admin", "financial_admin", "technical_admin", "support_admin")


def upgrade() -> None:
    op.create_table(
        "admin_profile",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("role", sa.Enum(*ADMIN_ROLES, name="adminrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_admin_profile_email", "admin_profile", ["email"], unique=True)

    op.create_table(
        "impersonation_session",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("admin_id", sa.String(), nullable=False),
        sa.Column("admin_email", sa.String(), nullable=False),
        sa.Column("admin_name", sa.String(), nullable=True),
        sa.Column("target_client_id", sa.String(), nullable=False),
        sa.Column("session_token", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("ended_by", sa.String(), nullable=True),
        sa.Column("end_reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_impersonation_session_admin_id", "impersonation_session", ["admin_id"])
    op.create_index("ix_impersonation_session_target_client_id", "impersonation_session", ["target_client_id"])
    op.create_index("ix_impersonation_session_session_token", "impersonation_session", ["session_token"], unique=True)
    op.create_index("ix_impersonation_session_started_at", "impersonation_session", ["started_at"])
    op.create_index("ix_impersonation_session_expires_at", "impersonation_session", ["expires_at"])
    op.create_index("ix_impersonation_session_status", "impersonation_session", ["status"])
    op.create_index("idx_impersonation_status_expires", "impersonation_session", ["status", "expires_at"])
    op.create_index("idx_impersonation_admin_status", "impersonation_session", ["admin_id", "status"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_email", sa.String(), nullable=True),
        sa.Column("actor_name", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False, server_default="low"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("result", sa.String(), nullable=False, server_default="success"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("previous_hash", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
    )
    op.create_index("ix_audit_log_occurred_at", "audit_log", ["occurred_at"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("idx_audit_actor_occurred", "audit_log", ["actor_id", "occurred_at"])
    op.create_index("idx_audit_action_occurred", "audit_log", ["action", "occurred_at"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("impersonation_session")
    op.drop_table("admin_profile")
    sa.Enum(name="adminrole").drop(op.get_bind(), checkfirst=True)
