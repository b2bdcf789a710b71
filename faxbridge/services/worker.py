"""
Polling worker driving both pipelines.

Each iteration bootstraps the spool directories, then runs the outgoing
and the incoming pipeline. The worker owns its store heartbeat and stops
with a StoreError when the heartbeat gives up, so the supervisor can
restart the process.
"""

import asyncio
import contextlib

import structlog

from faxbridge.config import Settings
from faxbridge.core.exceptions import StoreError
from faxbridge.models.domain.outcome import BatchReport
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.converter import ConverterGateway
from faxbridge.services.heartbeat import StoreHeartbeat
from faxbridge.services.incoming_pipeline import IncomingPipeline
from faxbridge.services.outgoing_pipeline import OutgoingPipeline
from faxbridge.services.spool import SpoolGateway

logger = structlog.get_logger(__name__)


class FaxWorker:
    def __init__(
        self,
        spool: SpoolGateway,
        outgoing: OutgoingPipeline,
        incoming: IncomingPipeline,
        heartbeat: StoreHeartbeat,
        *,
        server_name: str,
        poll_interval_seconds: float,
        server_name_marker: str | None = None
    ):
        self.spool = spool
        self.outgoing = outgoing
        self.incoming = incoming
        self.heartbeat = heartbeat
        self.server_name = server_name
        self.poll_interval_seconds = poll_interval_seconds
        self.server_name_marker = server_name_marker
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, store: JobStore) -> "FaxWorker":
        spool = SpoolGateway(
            settings.spool_directories,
            uid=settings.dialer_uid,
            gid=settings.dialer_gid,
            quarantine_dir=settings.fax_quarantine_dir,
        )
        converter = ConverterGateway.from_settings(settings)
        return cls(
            spool=spool,
            outgoing=OutgoingPipeline.from_settings(settings, store, spool, converter),
            incoming=IncomingPipeline.from_settings(settings, store, spool, converter),
            heartbeat=StoreHeartbeat(
                store,
                interval_seconds=settings.heartbeat_interval_seconds,
                max_attempts=settings.heartbeat_max_attempts,
            ),
            server_name=settings.server_name,
            poll_interval_seconds=settings.poll_interval_seconds,
            server_name_marker=settings.server_name_marker,
        )

    @property
    def is_eligible_server(self) -> bool:
        return not self.server_name_marker or self.server_name_marker in self.server_name

    async def run_once(self) -> list[BatchReport]:
        """One iteration. Bootstrap or claim failures propagate."""
        await self.spool.ensure_directories()
        reports = [await self.outgoing.run(), await self.incoming.run()]
        return reports

    async def run_forever(self) -> None:
        if not self.is_eligible_server:
            # Idle instead of exiting, an exit would make the supervisor restart us.
            logger.warning(
                "worker_server_not_eligible",
                server=self.server_name,
                marker=self.server_name_marker,
            )
            await self._stopping.wait()
            return

        self.heartbeat.start()
        logger.info("worker_started", server=self.server_name, interval_seconds=self.poll_interval_seconds)
        try:
            while not self._stopping.is_set():
                if self.heartbeat.failed.is_set():
                    raise StoreError("Store heartbeat failed, stopping worker", details=self.heartbeat.last_error)
                try:
                    await self.run_once()
                except Exception:  # noqa: BLE001
                    logger.exception("worker_iteration_failed")
                await self._sleep()
        finally:
            await self.heartbeat.stop()
            logger.info("worker_stopped")

    async def _sleep(self) -> None:
        waiters = [
            asyncio.create_task(self._stopping.wait()),
            asyncio.create_task(self.heartbeat.failed.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=self.poll_interval_seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run_forever(), name="fax-worker")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError, StoreError):
                await self._task
            self._task = None
