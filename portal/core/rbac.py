"""
Admin RBAC Definitions

Roles and capabilities for platform administrators. The matrix below is
the single source used by the permission gate and by the seed script.
"""

from enum import Enum
from typing import Dict, Set


class AdminRole(str, Enum):
    """Platform administrator roles."""
    SUPER_ADMIN = "super_admin"  # Founders, full access
    OPERATIONS_ADMIN = "operations_admin"  # Client management & support
    FINANCIAL_ADMIN = "financial_admin"  # Billing & financial reports
    TECHNICAL_ADMIN = "technical_admin"  # System config & maintenance
    SUPPORT_ADMIN = "support_admin"  # View-only & customer support


class AdminPermission(str, Enum):
    """
    Granular capabilities checked by the permission gate.
    """
    # Client Management
    MANAGE_CLIENTS = "manage_clients"
    VIEW_CLIENTS = "view_clients"
    SUSPEND_CLIENTS = "suspend_clients"
    DELETE_CLIENTS = "delete_clients"

    # License Management
    MANAGE_LICENSES = "manage_licenses"
    VIEW_LICENSES = "view_licenses"
    MODIFY_PLANS = "modify_plans"

    # Financial Access
    VIEW_FINANCIALS = "view_financials"
    MANAGE_BILLING = "manage_billing"
    EXPORT_FINANCIAL_DATA = "export_financial_data"
    MANAGE_STRIPE = "manage_stripe"

    # Admin Management
    MANAGE_ADMINS = "manage_admins"
    VIEW_ADMINS = "view_admins"
    ASSIGN_PERMISSIONS = "assign_permissions"
    RESET_2FA = "reset_2fa"

    # System Configuration
    SYSTEM_CONFIG = "system_config"
    FEATURE_FLAGS = "feature_flags"
    MAINTENANCE_MODE = "maintenance_mode"

    # Support & Impersonation
    CLIENT_IMPERSONATION = "client_impersonation"
    VIEW_SUPPORT_TICKETS = "view_support_tickets"
    MANAGE_SUPPORT_TICKETS = "manage_support_tickets"

    # Audit & Security
    AUDIT_ACCESS = "audit_access"
    SECURITY_MONITORING = "security_monitoring"
    EXPORT_AUDIT_LOGS = "export_audit_logs"

    # Metrics & Analytics
    VIEW_METRICS = "view_metrics"
    EXPORT_METRICS = "export_metrics"
    CUSTOM_REPORTS = "custom_reports"


# Role display names and descriptions
ROLE_METADATA: Dict[str, Dict[str, str]] = {
    AdminRole.SUPER_ADMIN: {
        "display_name": "Super Administrator",
        "department": "Leadership",
        "description": "Full access to every admin capability.",
    },
    AdminRole.OPERATIONS_ADMIN: {
        "display_name": "Operations Administrator",
        "department": "Operations",
        "description": "Client and license management, support, and impersonation.",
    },
    AdminRole.FINANCIAL_ADMIN: {
        "display_name": "Financial Administrator",
        "department": "Finance",
        "description": "Billing, financial reports, and metrics exports.",
    },
    AdminRole.TECHNICAL_ADMIN: {
        "display_name": "Technical Administrator",
        "department": "Engineering",
        "description": "System configuration, maintenance, and security monitoring.",
    },
    AdminRole.SUPPORT_ADMIN: {
        "display_name": "Support Administrator",
        "department": "Customer Support",
        "description": "Read access to clients plus support tickets and impersonation.",
    },
}


P = AdminPermission

ROLE_PERMISSIONS: Dict[AdminRole, Set[str]] = {
    AdminRole.SUPER_ADMIN: {p.value for p in AdminPermission},
    AdminRole.OPERATIONS_ADMIN: {
        P.MANAGE_CLIENTS.value,
        P.VIEW_CLIENTS.value,
        P.SUSPEND_CLIENTS.value,
        P.MANAGE_LICENSES.value,
        P.VIEW_LICENSES.value,
        P.CLIENT_IMPERSONATION.value,
        P.VIEW_SUPPORT_TICKETS.value,
        P.MANAGE_SUPPORT_TICKETS.value,
        P.VIEW_METRICS.value,
        P.AUDIT_ACCESS.value,
    },
    AdminRole.FINANCIAL_ADMIN: {
        P.VIEW_CLIENTS.value,
        P.VIEW_LICENSES.value,
        P.VIEW_FINANCIALS.value,
        P.MANAGE_BILLING.value,
        P.EXPORT_FINANCIAL_DATA.value,
        P.MANAGE_STRIPE.value,
        P.VIEW_METRICS.value,
        P.EXPORT_METRICS.value,
        P.CUSTOM_REPORTS.value,
    },
    AdminRole.TECHNICAL_ADMIN: {
        P.VIEW_CLIENTS.value,
        P.VIEW_LICENSES.value,
        P.SYSTEM_CONFIG.value,
        P.FEATURE_FLAGS.value,
        P.MAINTENANCE_MODE.value,
        P.AUDIT_ACCESS.value,
        P.SECURITY_MONITORING.value,
        P.VIEW_METRICS.value,
    },
    AdminRole.SUPPORT_ADMIN: {
        P.VIEW_CLIENTS.value,
        P.VIEW_LICENSES.value,
        P.CLIENT_IMPERSONATION.value,
        P.VIEW_SUPPORT_TICKETS.value,
        P.MANAGE_SUPPORT_TICKETS.value,
        P.VIEW_METRICS.value,
    },
}


def get_role_permissions(role: AdminRole | str) -> Set[str]:
    """Get all permissions for a role."""
    if isinstance(role, str):
        try:
            role = AdminRole(role)
        except ValueError:
            return set()
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(role: AdminRole | str, permission: AdminPermission | str) -> bool:
    key = permission.value if isinstance(permission, AdminPermission) else permission
    return key in get_role_permissions(role)
