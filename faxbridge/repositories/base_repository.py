import asyncio
from typing import Callable, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from faxbridge.core.exceptions import StoreError

T = TypeVar('T')

logger = structlog.get_logger(__name__)


class BaseRepository:
    """
    Runs blocking SQLAlchemy work off the event loop.

    Each operation gets its own session and transaction; the transaction
    commits when the callable returns and rolls back when it raises.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run_sync, operation, work)

    def _run_sync(self, operation: str, work: Callable[[Session], T]) -> T:
        try:
            with self.session_factory() as session, session.begin():
                return work(session)
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(
                f"Store operation {operation} failed",
                details={"operation": operation, "reason": str(e)}
            ) from e
