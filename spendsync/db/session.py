import ssl
from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from spendsync.core.config import get_settings

logger = structlog.get_logger()
settings = get_settings()

if not settings.DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Check your .env file.")


def _connect_args(database_url: str, ssl_mode: str) -> dict:
    """Driver connect arguments for the configured SSL mode."""
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}

    connect_args = {"statement_cache_size": 0}  # pgbouncer / Supavisor
    ssl_mode = ssl_mode.lower()

    if ssl_mode == "disable":
        logger.warning("database_ssl_disabled", msg="SSL disabled - do not use in production")
        connect_args["ssl"] = False
    elif ssl_mode == "require":
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = ssl_context
    elif ssl_mode in ("verify-ca", "verify-full"):
        if not settings.DB_SSL_CA_CERT_PATH:
            raise ValueError(f"DB_SSL_CA_CERT_PATH required for ssl_mode={ssl_mode}")
        ssl_context = ssl.create_default_context(cafile=settings.DB_SSL_CA_CERT_PATH)
        ssl_context.verify_mode = ssl.CERT_REQUIRED
        ssl_context.check_hostname = (ssl_mode == "verify-full")
        connect_args["ssl"] = ssl_context
    else:
        raise ValueError(f"Invalid DB_SSL_MODE: {ssl_mode}. Use: disable, require, verify-ca, verify-full")

    return connect_args


pool_args = {}
if settings.TESTING or settings.DATABASE_URL.startswith("sqlite"):
    from sqlalchemy.pool import NullPool
    pool_args["poolclass"] = NullPool
else:
    pool_args["pool_size"] = settings.DB_POOL_SIZE
    pool_args["max_overflow"] = settings.DB_MAX_OVERFLOW
    pool_args["pool_recycle"] = 300

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.DATABASE_URL, settings.DB_SSL_MODE),
    **pool_args
)

# expire_on_commit=False keeps ORM objects readable after commit in async code
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
