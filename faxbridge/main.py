"""
FastAPI admin application for the fax bridge.

This module:
- Sets up structured logging with structlog
- Implements exception handlers for consistent error responses
- Manages the store and, optionally, the embedded polling worker
  through the lifespan hook
- Registers the admin router

Run with: uvicorn faxbridge.main:app
"""

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from faxbridge import __version__
from faxbridge.api.admin import faxes
from faxbridge.config import settings
from faxbridge.core.deps import dispose_store, get_job_store, get_worker
from faxbridge.core.exceptions import ErrorCode, FaxBridgeError, StoreError
from faxbridge.core.logging import configure_logging
from faxbridge.repositories.job_store import JobStore

configure_logging(settings)

logger = structlog.get_logger()

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CLAIM_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.UNSUPPORTED_FORMAT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_DESCRIPTOR_VALUE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.MALFORMED_METADATA: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.STORE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: log configuration, start the embedded worker if enabled.
    Shutdown: stop the worker, dispose the store engine.
    """
    logger.info(
        "application_starting",
        service="faxbridge",
        version=__version__,
        environment=settings.app_env,
        server=settings.server_name,
        embedded_worker=settings.embedded_worker
    )

    worker = get_worker() if settings.embedded_worker else None
    if worker is not None:
        worker.start()

    yield

    logger.info("application_shutting_down")
    if worker is not None:
        await worker.stop()
    dispose_store()
    logger.info("shutdown_complete")


app = FastAPI(
    title="faxbridge",
    description="Fax queue to dialer spool bridge - admin API",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its processing time."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2)
    )
    response.headers["X-Process-Time"] = str(round(process_time, 3))
    return response


@app.exception_handler(FaxBridgeError)
async def fax_bridge_error_handler(request: Request, exc: FaxBridgeError):
    """Map domain errors to structured JSON responses."""
    logger.error(
        "fax_bridge_error",
        error_code=exc.error_code.value,
        message=exc.message,
        retryable=exc.retryable,
        path=request.url.path
    )

    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=exc.to_dict()
    )


@app.get("/health")
async def health(store: JobStore = Depends(get_job_store)):
    """Store reachability plus the embedded worker's heartbeat, if any."""
    try:
        await store.ping()
        store_ok = True
    except StoreError:
        store_ok = False

    body = {
        "status": "healthy" if store_ok else "degraded",
        "service": "faxbridge",
        "version": __version__,
        "store": "ok" if store_ok else "unreachable",
    }
    if settings.embedded_worker:
        body["heartbeat"] = get_worker().heartbeat.status()
    return JSONResponse(
        status_code=status.HTTP_200_OK if store_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body
    )


app.include_router(faxes.router)
