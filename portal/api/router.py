from fastapi import APIRouter

from portal.routers import audit_logs, auth, impersonation, session

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/admin/auth", tags=["Admin Auth"])
api_router.include_router(impersonation.router, prefix="/admin/impersonation", tags=["Impersonation"])
api_router.include_router(audit_logs.router, prefix="/admin/audit", tags=["Audit Logs"])
api_router.include_router(session.router, prefix="/admin/session", tags=["Admin Sessions"])
