"""
Async engine, session factory and the request-scoped session dependency.

`retry_on_store_errors` wraps service operations so transient store failures
(dropped connections, failover) are retried a bounded number of times before
surfacing to the caller. Each attempt starts from a rolled-back session, so a
retried operation re-reads everything it validates.
"""

import asyncio
import functools
from typing import AsyncGenerator

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from booking_core.core.config import get_settings
from booking_core.core.exceptions import StoreUnavailableError
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_store_retry

logger = get_logger(__name__)
settings = get_settings()


def _engine_kwargs() -> dict:
    if settings.DATABASE_URL.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, **_engine_kwargs())
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; commit on success, roll back on any error."""
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def retry_on_store_errors(func):
    """
    Retry a service coroutine whose first positional argument is the session.

    Domain errors pass straight through; only transient store errors are
    retried, up to STORE_RETRY_ATTEMPTS with linear backoff.
    """

    @functools.wraps(func)
    async def wrapper(db: AsyncSession, *args, **kwargs):
        attempts = settings.STORE_RETRY_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                return await func(db, *args, **kwargs)
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                await db.rollback()
                record_store_retry()
                logger.warning(
                    "store_transient_error",
                    operation=func.__name__,
                    attempt=attempt,
                    error=str(exc.orig) if exc.orig is not None else str(exc),
                )
                if attempt == attempts:
                    raise StoreUnavailableError(
                        "Booking store is temporarily unavailable. Please retry.",
                        details={"operation": func.__name__},
                    ) from exc
                await asyncio.sleep(settings.STORE_RETRY_BACKOFF * attempt)

    return wrapper
