"""
Store access for the fax queue.

The claim of an outgoing job is a conditional update
(``UPDATE ... WHERE id = ? AND state = 'created'``) inside its own
transaction. The preceding read takes no lock; whichever poller's update
matches the row wins, every other poller gets ClaimConflictError.
"""

from sqlalchemy import func, select, text, update
from sqlalchemy.orm import Session

from faxbridge.core.exceptions import ClaimConflictError, NotFoundError
from faxbridge.models.domain.fax import (
    FaxJob,
    FaxState,
    IncomingFaxRecord,
    OutgoingFaxSummary,
    RoutingNumber,
)
from faxbridge.models.entities.incoming_fax import IncomingFax
from faxbridge.models.entities.outgoing_fax import OutgoingFax
from faxbridge.models.entities.server import Server
from faxbridge.models.entities.trunk_number import TrunkNumber
from faxbridge.repositories.base_repository import BaseRepository

REQUEUEABLE_STATES = (FaxState.FAILED.value, FaxState.PROCESSING.value)


def dial_string_variants(dial_string: str) -> list[str]:
    """Equivalent notations of a number: a leading '+' and '00' are interchangeable."""
    number = dial_string.strip()
    if number.startswith("+"):
        return [number, "00" + number[1:]]
    if number.startswith("00"):
        return [number, "+" + number[2:]]
    return [number]


class JobStore(BaseRepository):

    async def claim_created_jobs(self, server_name: str) -> list[FaxJob]:
        """Jobs in state created that belong to this server. Not a lock."""

        def work(session: Session) -> list[FaxJob]:
            rows = session.scalars(
                select(OutgoingFax)
                .join(Server, Server.id == OutgoingFax.iaxfriends_id)
                .where(Server.name == server_name)
                .where(OutgoingFax.state == FaxState.CREATED.value)
                .order_by(OutgoingFax.id)
            ).all()
            return [FaxJob.model_validate(row) for row in rows]

        return await self._run("claim_created_jobs", work)

    async def transition_state(
        self,
        job_id: int,
        to_state: FaxState,
        from_state: FaxState | None = None
    ) -> None:
        """
        Set the state of an outgoing job in one transaction.

        With from_state the update only applies if the row is still in that
        state; otherwise ClaimConflictError is raised and nothing changes.
        """

        def work(session: Session) -> None:
            stmt = update(OutgoingFax).where(OutgoingFax.id == job_id)
            if from_state is not None:
                stmt = stmt.where(OutgoingFax.state == from_state.value)
            result = session.execute(stmt.values(state=to_state.value))
            if result.rowcount == 1:
                return
            if from_state is not None:
                raise ClaimConflictError(job_id, from_state.value)
            raise NotFoundError(f"Outgoing fax {job_id} not found", details={"job_id": job_id})

        await self._run("transition_state", work)

    async def insert_incoming_record(self, record: IncomingFaxRecord) -> int:
        def work(session: Session) -> int:
            row = IncomingFax(**record.model_dump())
            session.add(row)
            session.flush()
            return row.id

        return await self._run("insert_incoming_record", work)

    async def incoming_record_exists(self, record: IncomingFaxRecord) -> bool:
        """True if this artifact was already persisted by an earlier run."""

        def work(session: Session) -> bool:
            count = session.scalar(
                select(func.count(IncomingFax.id))
                .where(IncomingFax.iaxfriends_id == record.iaxfriends_id)
                .where(IncomingFax.filename == record.filename)
                .where(IncomingFax.received_at == record.received_at)
                .where(IncomingFax.sender == record.sender)
            )
            return bool(count)

        return await self._run("incoming_record_exists", work)

    async def lookup_routing_number(self, number_id: int, require_fax_capable: bool = True) -> RoutingNumber:
        def work(session: Session) -> RoutingNumber:
            stmt = select(TrunkNumber).where(TrunkNumber.id == number_id)
            if require_fax_capable:
                stmt = stmt.where(TrunkNumber.is_fax.is_(True))
            rows = session.scalars(stmt).all()
            if len(rows) != 1:
                raise NotFoundError(
                    "Could not find outgoing fax number to use",
                    details={"number_id": number_id, "matches": len(rows)}
                )
            return RoutingNumber.model_validate(rows[0])

        return await self._run("lookup_routing_number", work)

    async def resolve_routing_number_by_dial_string(self, dial_string: str) -> RoutingNumber:
        variants = dial_string_variants(dial_string)

        def work(session: Session) -> RoutingNumber:
            rows = session.scalars(
                select(TrunkNumber).where(TrunkNumber.full_number.in_(variants))
            ).all()
            if len(rows) != 1:
                raise NotFoundError(
                    f"No unique trunk number for {dial_string}",
                    details={"dial_string": dial_string, "variants": variants, "matches": len(rows)}
                )
            return RoutingNumber.model_validate(rows[0])

        return await self._run("resolve_routing_number_by_dial_string", work)

    async def resolve_server_identity(self, name: str) -> int:
        def work(session: Session) -> int:
            ids = session.scalars(select(Server.id).where(Server.name == name)).all()
            if len(ids) != 1:
                raise NotFoundError(
                    f"No unique server named {name}",
                    details={"name": name, "matches": len(ids)}
                )
            return ids[0]

        return await self._run("resolve_server_identity", work)

    async def list_outgoing(self, state: FaxState | None = None) -> list[OutgoingFaxSummary]:
        def work(session: Session) -> list[OutgoingFaxSummary]:
            stmt = select(
                OutgoingFax.id,
                OutgoingFax.filename,
                OutgoingFax.outgoing_number_id,
                OutgoingFax.destination.label("destination"),
                OutgoingFax.state,
            ).order_by(OutgoingFax.id)
            if state is not None:
                stmt = stmt.where(OutgoingFax.state == state.value)
            return [OutgoingFaxSummary.model_validate(row) for row in session.execute(stmt)]

        return await self._run("list_outgoing", work)

    async def requeue_job(self, job_id: int) -> None:
        """Operator recovery: move a failed or stuck job back to created."""

        def work(session: Session) -> None:
            state = session.scalar(select(OutgoingFax.state).where(OutgoingFax.id == job_id))
            if state is None:
                raise NotFoundError(f"Outgoing fax {job_id} not found", details={"job_id": job_id})
            result = session.execute(
                update(OutgoingFax)
                .where(OutgoingFax.id == job_id)
                .where(OutgoingFax.state.in_(REQUEUEABLE_STATES))
                .values(state=FaxState.CREATED.value)
            )
            if result.rowcount != 1:
                raise ClaimConflictError(job_id, "|".join(REQUEUEABLE_STATES))

        await self._run("requeue_job", work)

    async def ping(self) -> None:
        await self._run("ping", lambda session: session.execute(text("SELECT 1")))
