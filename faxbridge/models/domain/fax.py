from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# 9999-12-31T23:59:59Z, the last second datetime can represent
MAX_EPOCH_SECONDS = 253402300799


class FaxState(str, Enum):
    """Lifecycle states of queue rows."""

    CREATED = "created"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    UNREAD = "unread"


class FaxJob(BaseModel):
    """An outgoing fax claimed from faxes_outgoing."""

    id: int
    fax_data: bytes = Field(..., repr=False)
    filename: str
    outgoing_number_id: int
    destination: str
    state: FaxState = FaxState.CREATED

    model_config = ConfigDict(from_attributes=True)


class OutgoingFaxSummary(BaseModel):
    """Admin view of an outgoing row, without the payload."""

    id: int
    filename: str
    outgoing_number_id: int
    destination: str
    state: str

    model_config = ConfigDict(from_attributes=True)


class RoutingNumber(BaseModel):
    """Read-only trunk number used as caller identity and trunk selector."""

    id: int
    full_number: str
    header_ppid: str | None = None
    ps_endpoints_id: str
    is_fax: bool

    model_config = ConfigDict(from_attributes=True)


class InboundFaxMetadata(BaseModel):
    """Sidecar written by the telephony side next to each received image."""

    image: str = Field(..., min_length=1)
    received_at: int = Field(..., ge=0, le=MAX_EPOCH_SECONDS)
    sender: str = Field(..., alias="from", min_length=1)
    destination: str = Field(..., alias="to", min_length=1)
    tenant_id: int

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sender", "destination", mode="before")
    @classmethod
    def coerce_number(cls, v):
        # Numbers sometimes arrive as JSON integers.
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def received_at_utc(self) -> datetime:
        return datetime.fromtimestamp(self.received_at, tz=timezone.utc)


class IncomingFaxRecord(BaseModel):
    """Row to be inserted into faxes_incoming."""

    customer_id: int
    iaxfriends_id: int
    filename: str
    state: FaxState = FaxState.UNREAD
    received_at: datetime
    sender: str
    incoming_number_id: int
    fax_data: bytes = Field(..., repr=False)

    model_config = ConfigDict(use_enum_values=True)
