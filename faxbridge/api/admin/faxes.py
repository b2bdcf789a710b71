"""
Admin endpoints for inspecting and recovering fax jobs.

Jobs that failed mid-pipeline stay in 'failed' (or 'processing' after a
crash) until an operator requeues them here.
"""

from fastapi import APIRouter, Depends
import structlog

from faxbridge.core.deps import get_job_store, get_worker
from faxbridge.core.security import verify_api_key
from faxbridge.models.domain.fax import FaxState, OutgoingFaxSummary
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.worker import FaxWorker

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_api_key)])


@router.get("/faxes/outgoing", response_model=list[OutgoingFaxSummary])
async def list_outgoing_faxes(
    state: FaxState | None = None,
    store: JobStore = Depends(get_job_store)
):
    """List outgoing jobs, optionally filtered by state. Payloads are omitted."""
    return await store.list_outgoing(state)


@router.post("/faxes/outgoing/{job_id}/requeue")
async def requeue_outgoing_fax(job_id: int, store: JobStore = Depends(get_job_store)):
    """Move a failed or stuck job back to 'created' so the next poll picks it up."""
    await store.requeue_job(job_id)
    logger.info("outgoing_job_requeued", job_id=job_id)
    return {
        "success": True,
        "message": f"Job {job_id} requeued",
        "job_id": job_id,
        "state": FaxState.CREATED.value
    }


@router.post("/poll")
async def poll_now(worker: FaxWorker = Depends(get_worker)):
    """Run one worker iteration immediately and return both batch reports."""
    reports = await worker.run_once()
    return {
        "success": True,
        "reports": [
            {**report.model_dump(mode="json"), "summary": report.summary()}
            for report in reports
        ]
    }
