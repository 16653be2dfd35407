import logging
import re
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from portal.core.config import get_settings
from portal.models.base import Base

settings = get_settings()
logger = logging.getLogger(__name__)


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


database_url = get_async_database_url(settings.database_url)

engine_kwargs: dict = {"future": True, "echo": settings.debug}
if "postgresql" in database_url:
    engine_kwargs.update(
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,   # Recycle connections after 1 hour
        pool_timeout=10,     # Wait up to 10 seconds for a connection from pool
        max_overflow=10,     # Allow extra connections beyond pool_size
        connect_args={"connect_timeout": 10},
    )

logger.info("Creating database engine with URL: %s@***", database_url.split("@")[0])
engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)

AsyncSessionFactory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionFactory() as session:
        yield session


async def init_database() -> None:
    """Create all tables. In production use Alembic migrations instead.

    This is a best-effort initialization. If create_all fails the app can
    still function when the tables already exist via migrations.
    """
    import portal.models  # noqa: F401 ensure models are registered

    logger.info("Initializing database tables...")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        # Don't fail startup - migrations are the source of truth
        logger.warning("create_all failed (expected if using Alembic): %s", e)


async def test_database_connection() -> bool:
    """Test database connection with timeout."""
    import asyncio
    from sqlalchemy import text

    async def _test_connection():
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

    try:
        await asyncio.wait_for(_test_connection(), timeout=10.0)
        logger.info("Database connection test successful")
        return True
    except asyncio.TimeoutError:
        logger.error("Database connection test timed out after 10 seconds")
        return False
    except Exception as e:
        logger.exception("Database connection test failed: %s", e)
        return False
