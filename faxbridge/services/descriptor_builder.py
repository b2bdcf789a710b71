"""
Renders the dialer's call-file descriptor for one outbound fax.

Format: one ``Key:Value`` per line. The consumer splits dialplan variable
values on ';', so semicolons inside the P-Preferred-Identity header are
escaped, and an absent header is omitted rather than written empty.
"""

from dataclasses import dataclass
from pathlib import Path

from faxbridge.config import Settings
from faxbridge.core.exceptions import InvalidDescriptorValueError
from faxbridge.models.domain.fax import RoutingNumber

PPID_HEADER_KEY = "Set:PJSIP_HEADER(add,P-Preferred-Identity)"


@dataclass(frozen=True)
class DialPolicy:
    """Constants written into every descriptor."""

    channel_technology: str = "PJSIP"
    max_retries: int = 0
    retry_time: int = 300
    wait_time: int = 45
    archive: str = "yes"
    context: str = "fax"
    extension: str = "out"
    priority: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "DialPolicy":
        return cls(
            channel_technology=settings.dial_channel_technology,
            max_retries=settings.dial_max_retries,
            retry_time=settings.dial_retry_time,
            wait_time=settings.dial_wait_time,
            archive=settings.dial_archive,
            context=settings.dial_context,
            extension=settings.dial_extension,
            priority=settings.dial_priority,
        )


def escape_header_value(value: str) -> str:
    return value.replace(";", "\\;")


def checked_value(field: str, value, required: bool = True) -> str:
    """A value safe to place on one descriptor line."""
    text = "" if value is None else str(value)
    if (required and not text.strip()) or "\r" in text or "\n" in text:
        raise InvalidDescriptorValueError(field, text)
    return text


class DescriptorBuilder:
    def __init__(self, policy: DialPolicy | None = None):
        self.policy = policy or DialPolicy()

    def build(
        self,
        routing_number: RoutingNumber,
        job_id: int | str,
        converted_document_path: Path | str,
        destination_address: str
    ) -> str:
        """
        Raises:
            InvalidDescriptorValueError: a required value is empty, or any
                value contains CR/LF and would start a new Key:Value line.
        """
        p = self.policy
        destination = checked_value("destination", destination_address)
        trunk = checked_value("ps_endpoints_id", routing_number.ps_endpoints_id)
        full_number = checked_value("full_number", routing_number.full_number)
        faxfile = checked_value("converted_document_path", converted_document_path)
        header = checked_value("header_ppid", routing_number.header_ppid, required=False)

        lines = [
            f"Channel:{p.channel_technology}/{destination}@{trunk}",
            f'CallerID:"{full_number}" <{full_number}>',
            f"MaxRetries:{p.max_retries}",
            f"RetryTime:{p.retry_time}",
            f"WaitTime:{p.wait_time}",
            f"Archive:{p.archive}",
            f"Context:{p.context}",
            f"Extension:{p.extension}",
            f"Priority:{p.priority}",
            f"Set:FAXID={job_id}",
            f"Set:FAXFILE={faxfile}",
        ]
        if header:
            lines.append(f"{PPID_HEADER_KEY}={escape_header_value(header)}")
        return "\n".join(lines) + "\n"
