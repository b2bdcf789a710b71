"""
FastAPI dependencies for dependency injection.

This module provides the shared store and worker instances used by the
admin endpoints and the application lifespan.

Design decisions:
- One SQLAlchemy engine per process (it owns the connection pool)
- Lazy initialization so importing the app never touches the database
- Explicit dispose hook for the shutdown phase
"""

from sqlalchemy.engine import Engine

from faxbridge.config import settings
from faxbridge.models.base import create_session_factory, create_store_engine
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.worker import FaxWorker

_engine: Engine | None = None
_job_store: JobStore | None = None
_worker: FaxWorker | None = None


def get_job_store() -> JobStore:
    """
    Dependency that provides the process-wide JobStore.

    The engine is created on first use and reused across requests.
    Call dispose_store() in the app shutdown hook.
    """
    global _engine, _job_store

    if _job_store is None:
        _engine = create_store_engine(settings.database_url)
        _job_store = JobStore(create_session_factory(_engine))
    return _job_store


def get_worker() -> FaxWorker:
    """Dependency that provides the worker bound to the shared store."""
    global _worker

    if _worker is None:
        _worker = FaxWorker.from_settings(settings, get_job_store())
    return _worker


def dispose_store() -> None:
    """Release pooled connections on shutdown."""
    global _engine, _job_store, _worker

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _job_store = None
    _worker = None
