import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.api.router import api_router
from portal.background.scheduler import shutdown_scheduler, start_scheduler
from portal.core.config import get_settings
from portal.core.db import init_database, test_database_connection
from portal.core.errors import PortalError, error_for_status
from portal.middleware.security import ErrorReporter, setup_security_middleware

settings = get_settings()
logger = logging.getLogger(__name__)

db_initialized = False
db_error: str | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global db_initialized, db_error
    logger.info("Starting application initialization")

    async def initialize_database():
        """Initialize database in background - non-blocking for health checks."""
        global db_initialized, db_error
        try:
            if not await test_database_connection():
                db_error = "Database connection failed"
                logger.error(db_error)
                return
            await asyncio.wait_for(init_database(), timeout=30.0)
            db_initialized = True
            logger.info("Database initialization complete")
        except asyncio.TimeoutError:
            db_error = "Database initialization timed out after 30s"
            logger.error(db_error)
        except Exception as e:
            db_error = str(e)
            logger.exception("Error initializing database")

    init_task = asyncio.create_task(initialize_database())

    if settings.scheduler_enabled:
        start_scheduler()

    yield

    logger.info("Shutting down")
    shutdown_scheduler()
    if not init_task.done():
        init_task.cancel()


app = FastAPI(
    title=settings.project_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
setup_security_middleware(app)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "message": "Invalid request", "details": {"errors": errors}},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = error_for_status(exc.status_code, str(exc.detail))
    kind = error.error_kind if error.status_code == exc.status_code else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = ErrorReporter.report_error(
        exc, context={"path": request.url.path, "method": request.method}
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal",
            "message": "An unexpected error occurred",
            "correlation_id": correlation_id,
        },
    )


app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Health check endpoint - responds immediately, reports database status."""
    return {
        "status": "ok",
        "service": settings.project_name,
        "environment": settings.environment,
        "database_ready": db_initialized,
        "database_error": db_error,
    }
