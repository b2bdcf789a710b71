"""
Store heartbeat owned by whoever starts it.

Pings the store every interval. A failing ping is retried with tenacity;
when retries are exhausted the ``failed`` event is set and the task ends,
leaving it to the owner (the worker) to shut down.
"""

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from faxbridge.core.exceptions import StoreError
from faxbridge.repositories.job_store import JobStore

logger = structlog.get_logger(__name__)


class StoreHeartbeat:
    def __init__(self, store: JobStore, interval_seconds: float, max_attempts: int = 3):
        self.store = store
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.failed = asyncio.Event()
        self.last_ok_at: datetime | None = None
        self.last_error: dict[str, Any] | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self.failed.clear()
        self.last_error = None
        self._task = asyncio.create_task(self._loop(), name="store-heartbeat")
        logger.info("store_heartbeat_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("store_heartbeat_stopped")

    async def beat(self) -> None:
        """One ping, retried on StoreError with exponential backoff."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.interval_seconds),
            reraise=True,
        ):
            with attempt:
                await self.store.ping()
        self.last_ok_at = datetime.now(timezone.utc)

    async def _loop(self) -> None:
        while True:
            try:
                await self.beat()
            except StoreError as e:
                self.last_error = e.to_dict()
                logger.error("store_heartbeat_failed", attempts=self.max_attempts, error=str(e))
                self.failed.set()
                return
            await asyncio.sleep(self.interval_seconds)

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "failed": self.failed.is_set(),
            "last_ok_at": self.last_ok_at.isoformat() if self.last_ok_at else None,
            "last_error": self.last_error,
        }
