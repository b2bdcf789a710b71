"""
Incoming fax pipeline: received TIFF + JSON sidecar -> faxes_incoming row.

Per artifact: parse sidecar, resolve server and trunk number, convert
TIFF -> PDF, read it, insert the row (state unread), then delete sidecar,
image and PDF in that order. Once the row is inserted the artifact counts
as ingested; a cleanup failure is reported as partial, never re-ingested.
"""

import asyncio
import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from faxbridge.config import Settings
from faxbridge.core.exceptions import FaxBridgeError, MalformedMetadataError
from faxbridge.models.domain.fax import FaxState, IncomingFaxRecord, InboundFaxMetadata
from faxbridge.models.domain.outcome import BatchReport, OutcomeStatus, PipelineOutcome
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.converter import ConverterGateway
from faxbridge.services.spool import SpoolGateway

logger = structlog.get_logger(__name__)

SIDECAR_EXTENSION = ".json"


class IncomingPipeline:
    name = "incoming"

    def __init__(
        self,
        store: JobStore,
        converter: ConverterGateway,
        spool: SpoolGateway,
        *,
        server_name: str,
        incoming_dir: Path
    ):
        self.store = store
        self.converter = converter
        self.spool = spool
        self.server_name = server_name
        self.incoming_dir = Path(incoming_dir)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: JobStore,
        spool: SpoolGateway,
        converter: ConverterGateway | None = None
    ) -> "IncomingPipeline":
        return cls(
            store=store,
            converter=converter or ConverterGateway.from_settings(settings),
            spool=spool,
            server_name=settings.server_name,
            incoming_dir=settings.fax_incoming_dir,
        )

    async def run(self) -> BatchReport:
        """Ingest every sidecar in the inbound directory. A listing failure aborts the run."""
        sidecars = await self.spool.list_sidecars(self.incoming_dir, SIDECAR_EXTENSION)
        if sidecars:
            logger.info("incoming_batch_started", artifacts=len(sidecars))

        outcomes = await asyncio.gather(*(self.process_artifact(path) for path in sidecars))
        report = BatchReport(pipeline=self.name, outcomes=list(outcomes))
        if sidecars:
            logger.info("incoming_batch_completed", **report.summary())
        return report

    def parse_metadata(self, sidecar: Path, raw: bytes) -> InboundFaxMetadata:
        try:
            return InboundFaxMetadata.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedMetadataError(str(sidecar), str(e)) from e

    def image_path(self, metadata: InboundFaxMetadata) -> Path:
        return self._resolve(metadata.image)

    def _resolve(self, image: str) -> Path:
        path = Path(image)
        return path if path.is_absolute() else self.incoming_dir / path

    def companion_images(self, sidecar: Path, raw: bytes) -> list[Path]:
        """Images inside the inbound directory that a broken sidecar refers to."""
        try:
            image = json.loads(raw).get("image")
        except (ValueError, AttributeError):
            image = None
        if isinstance(image, str) and image:
            candidates = [self._resolve(image)]
        else:
            candidates = [sidecar.with_suffix(ext) for ext in (".tiff", ".tif")]
        return [path for path in candidates if path.parent == self.incoming_dir and path != sidecar]

    async def process_artifact(self, sidecar: Path) -> PipelineOutcome:
        subject = sidecar.name
        log = logger.bind(artifact=subject)

        try:
            raw = await self.spool.read_bytes(sidecar)
            metadata = self.parse_metadata(sidecar, raw)
        except MalformedMetadataError as e:
            log.error("incoming_metadata_malformed", error=e.details.get("reason"))
            try:
                await self.spool.quarantine(sidecar, *self.companion_images(sidecar, raw))
            except FaxBridgeError as qe:
                log.error("incoming_quarantine_failed", error=str(qe))
            return PipelineOutcome.from_error(subject, "metadata", e)
        except Exception as e:
            log.error("incoming_metadata_unreadable", error=str(e))
            return PipelineOutcome.from_error(subject, "metadata", e)

        image = self.image_path(metadata)
        if not await self.spool.exists(image):
            # Telephony side has not finished writing this fax yet.
            log.info("incoming_artifact_incomplete", image=str(image))
            return PipelineOutcome(subject=subject, status=OutcomeStatus.SKIPPED, stage="discover")

        stage = "identity"
        try:
            server_id = await self.store.resolve_server_identity(self.server_name)
            routing_number = await self.store.resolve_routing_number_by_dial_string(metadata.destination)

            stage = "convert"
            document = await self.converter.convert(image, "pdf")

            stage = "read"
            payload = await self.spool.read_bytes(document)

            stage = "persist"
            record = IncomingFaxRecord(
                customer_id=metadata.tenant_id,
                iaxfriends_id=server_id,
                filename=document.name,
                state=FaxState.UNREAD,
                received_at=metadata.received_at_utc,
                sender=metadata.sender,
                incoming_number_id=routing_number.id,
                fax_data=payload,
            )
            if await self.store.incoming_record_exists(record):
                log.warning("incoming_record_already_persisted", filename=record.filename)
            else:
                record_id = await self.store.insert_incoming_record(record)
                log.info("incoming_record_persisted", record_id=record_id, trunk_number_id=routing_number.id)
        except Exception as e:
            log.error("incoming_artifact_failed", stage=stage, error=str(e))
            return PipelineOutcome.from_error(subject, stage, e)

        try:
            for path in (sidecar, image, document):
                await self.spool.remove(path)
        except FaxBridgeError as e:
            log.error("incoming_cleanup_failed", error=str(e))
            return PipelineOutcome.from_error(subject, "cleanup", e, status=OutcomeStatus.PARTIAL)

        return PipelineOutcome.succeeded(subject)
