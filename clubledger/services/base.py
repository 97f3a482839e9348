"""
Base service class for the club progression ledger.

Provides async database session management and the retry-on-conflict loop
shared by every read-compute-write operation.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from clubledger.config import Config
from clubledger.utils.ledger_exceptions import ConflictError, LedgerCommitError

logger = logging.getLogger(__name__)

T = TypeVar('T')

def as_conflict(error: Exception, operation: str):
    """Translate a store-level concurrency error into a ConflictError, or None"""
    if isinstance(error, ConflictError):
        return error
    if isinstance(error, StaleDataError):
        return ConflictError(operation, str(error))
    if isinstance(error, IntegrityError):
        # Concurrent first insert of a uniquely keyed row
        return ConflictError(operation, str(error.orig))
    if isinstance(error, OperationalError) and 'locked' in str(error.orig).lower():
        return ConflictError(operation, str(error.orig))
    return None

async def execute_with_retry(func: Callable[[], Awaitable[T]], operation: str,
                             max_retries: int = None) -> T:
    """
    Execute a read-compute-write attempt, re-running it from scratch on conflict.

    ``func`` must open its own transaction and perform no side effects before
    its write phase, so every attempt re-derives its result from fresh state.

    Raises:
        LedgerCommitError: When retries are exhausted or the commit fails otherwise
    """
    if max_retries is None:
        max_retries = Config.LEDGER_MAX_RETRIES

    for attempt in range(max_retries):
        try:
            return await func()
        except Exception as e:
            conflict = as_conflict(e, operation)
            if conflict is None:
                raise
            if attempt == max_retries - 1:
                logger.error(f"{operation} failed after {max_retries} attempts: {conflict}")
                raise LedgerCommitError(operation, max_retries, str(conflict)) from e
            logger.warning(f"Retry attempt {attempt + 1} for {operation}: {conflict}")
            await asyncio.sleep(min(Config.LEDGER_RETRY_BASE_DELAY * (2 ** attempt), 1.0))

class BaseService:
    """Base class for all services with async database session management."""

    def __init__(self, session_factory):
        """
        Initialize base service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
