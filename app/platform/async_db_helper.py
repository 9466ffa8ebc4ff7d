"""
Async database helpers shared by the services.

Services run every multi-statement change inside ``atomic(session)`` so the
whole unit commits or none of it does, and callers never see raw store
exceptions.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.platform.exceptions import InternalError
from app.platform.logger import get_logger

logger = get_logger("database")


@asynccontextmanager
async def atomic(session: AsyncSession):
    """
    Commit on success, roll back on any error.

    Usage:
        async with atomic(db):
            await db.execute(delete(Otp).where(Otp.email == email))
            db.add(Otp(...))

    SQLAlchemy errors are re-raised as InternalError with the original
    message kept in ``detail`` and the original exception as ``__cause__``.
    """
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Transaction failed and was rolled back: {str(e)}")
        raise InternalError(detail=str(e)) from e
    except Exception:
        await session.rollback()
        raise


async def fetch_one(session: AsyncSession, statement) -> Optional[Any]:
    """Run a SELECT and return the first ORM row (or None)."""
    try:
        result = await session.execute(statement)
        return result.scalars().first()
    except SQLAlchemyError as e:
        logger.error(f"Query failed: {str(e)}")
        raise InternalError(detail=str(e)) from e


async def refresh_instance(session: AsyncSession, instance) -> None:
    """Reload server-generated columns (created_at, updated_at) onto ``instance``."""
    try:
        await session.refresh(instance)
    except SQLAlchemyError as e:
        logger.error(f"Refresh failed: {str(e)}")
        raise InternalError(detail=str(e)) from e
