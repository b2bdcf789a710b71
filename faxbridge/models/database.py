import structlog

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from faxbridge.models.base import Base
from faxbridge.models.entities import incoming_fax, outgoing_fax, server, trunk_number  # noqa: F401

logger = structlog.get_logger(__name__)


def create_tables(engine: Engine) -> None:
    """Create the queue schema. Production databases are migrated externally."""
    Base.metadata.create_all(bind=engine)

    tables = inspect(engine).get_table_names()
    logger.info("database_tables", tables=tables)
