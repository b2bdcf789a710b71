"""
Outgoing fax pipeline: queue row -> TIFF + call file -> dialer spool.

Per job, strictly in order:
1. claim (created -> processing, conditional update)
2. write the PDF payload into the outbound working directory
3. convert PDF -> TIFF
4. look up the fax-capable trunk number, write the .call descriptor
5. processing -> processed
6. remove the PDF (best-effort)
7. chown the descriptor and rename it into the dialer watch directory

Jobs of one batch run concurrently; every job ends in a PipelineOutcome and
one job's failure never cancels the others.
"""

import asyncio
from pathlib import Path

import structlog

from faxbridge.config import Settings
from faxbridge.core.exceptions import ClaimConflictError, FaxBridgeError, SpoolError, UnsupportedFormatError
from faxbridge.models.domain.fax import FaxJob, FaxState
from faxbridge.models.domain.outcome import BatchReport, OutcomeStatus, PipelineOutcome, error_to_dict
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.converter import ConverterGateway, derive_output_path
from faxbridge.services.descriptor_builder import DescriptorBuilder, DialPolicy
from faxbridge.services.spool import SpoolGateway

logger = structlog.get_logger(__name__)

ACCEPTED_DOCUMENT_EXTENSION = ".pdf"
DESCRIPTOR_EXTENSION = ".call"


def document_filename(job: FaxJob) -> str:
    """
    Working file name for a job's payload.

    Only the base name of the declared filename is used, prefixed with the
    job id so two jobs named invoice.pdf never share a working file.
    """
    name = Path(job.filename).name
    if Path(name).suffix.lower() != ACCEPTED_DOCUMENT_EXTENSION:
        raise UnsupportedFormatError(job.filename, expected=ACCEPTED_DOCUMENT_EXTENSION)
    return f"{job.id}-{name}"


class OutgoingPipeline:
    name = "outgoing"

    def __init__(
        self,
        store: JobStore,
        converter: ConverterGateway,
        spool: SpoolGateway,
        builder: DescriptorBuilder,
        *,
        server_name: str,
        working_dir: Path,
        watch_dir: Path
    ):
        self.store = store
        self.converter = converter
        self.spool = spool
        self.builder = builder
        self.server_name = server_name
        self.working_dir = Path(working_dir)
        self.watch_dir = Path(watch_dir)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: JobStore,
        spool: SpoolGateway,
        converter: ConverterGateway | None = None
    ) -> "OutgoingPipeline":
        return cls(
            store=store,
            converter=converter or ConverterGateway.from_settings(settings),
            spool=spool,
            builder=DescriptorBuilder(DialPolicy.from_settings(settings)),
            server_name=settings.server_name,
            working_dir=settings.fax_outgoing_dir,
            watch_dir=settings.dialer_outgoing_dir,
        )

    async def run(self) -> BatchReport:
        """
        Process every created job of this server.

        The claim query is batch-level: its failure propagates and aborts
        the run. Spool directories are bootstrapped by FaxWorker.run_once.
        """
        jobs = await self.store.claim_created_jobs(self.server_name)
        if jobs:
            logger.info("outgoing_batch_started", server=self.server_name, jobs=len(jobs))

        outcomes = await asyncio.gather(*(self.process_job(job) for job in jobs))
        report = BatchReport(pipeline=self.name, outcomes=list(outcomes))
        if jobs:
            logger.info("outgoing_batch_completed", **report.summary())
        return report

    async def process_job(self, job: FaxJob) -> PipelineOutcome:
        subject = str(job.id)
        log = logger.bind(job_id=job.id)

        try:
            await self.store.transition_state(job.id, FaxState.PROCESSING, from_state=FaxState.CREATED)
        except ClaimConflictError as e:
            log.info("outgoing_job_claimed_elsewhere")
            return PipelineOutcome.from_error(subject, "claim", e, status=OutcomeStatus.SKIPPED)
        except Exception as e:
            log.error("outgoing_job_claim_failed", error=str(e))
            return PipelineOutcome.from_error(subject, "claim", e)

        stage = "materialize"
        warnings = []
        try:
            document = await self.spool.write_bytes(self.working_dir / document_filename(job), job.fax_data)

            stage = "convert"
            image = await self.converter.convert(document, "tiff")

            stage = "descriptor"
            routing_number = await self.store.lookup_routing_number(job.outgoing_number_id, require_fax_capable=True)
            descriptor_path = derive_output_path(image, DESCRIPTOR_EXTENSION)
            descriptor = self.builder.build(routing_number, job.id, image, job.destination)
            await self.spool.write_text(descriptor_path, descriptor)

            stage = "finalize"
            await self.store.transition_state(job.id, FaxState.PROCESSED, from_state=FaxState.PROCESSING)

            stage = "cleanup"
            try:
                await self.spool.remove(document)
            except SpoolError as e:
                log.warning("outgoing_document_cleanup_failed", path=str(document), error=str(e))
                warnings.append(error_to_dict(e))

            stage = "handoff"
            await self.spool.set_owner(descriptor_path)
            target = await self.spool.hand_off(descriptor_path, self.watch_dir)
        except Exception as e:
            log.error(
                "outgoing_job_failed",
                stage=stage,
                error=str(e),
                retryable=e.retryable if isinstance(e, FaxBridgeError) else None,
            )
            await self._mark_failed(job.id, log)
            return PipelineOutcome.from_error(subject, stage, e)

        log.info("outgoing_job_dispatched", descriptor=str(target))
        return PipelineOutcome.succeeded(subject, warnings)

    async def _mark_failed(self, job_id: int, log) -> None:
        """Move the job to the error sink so it is visible to operators."""
        try:
            await self.store.transition_state(job_id, FaxState.FAILED)
        except FaxBridgeError as e:
            log.error("outgoing_job_mark_failed_failed", error=str(e))
