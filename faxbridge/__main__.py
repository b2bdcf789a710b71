"""
Long-running fax polling worker.

Runs the outgoing and incoming pipelines every POLL_INTERVAL_SECONDS.
Exits non-zero when the store heartbeat is lost so the process
supervisor restarts it.
"""

import asyncio
import sys

import structlog

from faxbridge.config import settings
from faxbridge.core.exceptions import StoreError
from faxbridge.core.logging import configure_logging
from faxbridge.models.base import create_session_factory, create_store_engine
from faxbridge.repositories.job_store import JobStore
from faxbridge.services.worker import FaxWorker


def main() -> None:
    configure_logging(settings)
    logger = structlog.get_logger("faxbridge.worker")

    engine = create_store_engine(settings.database_url)
    worker = FaxWorker.from_settings(settings, JobStore(create_session_factory(engine)))
    try:
        asyncio.run(worker.run_forever())
    except StoreError as e:
        logger.error("worker_exiting", error=str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("worker_interrupted")
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
