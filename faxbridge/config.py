"""
Configuration management for the fax bridge.

Settings come from environment variables or a .env file. Each processing
server runs with its own SERVER_NAME and spool layout; the store and the
dial policy are normally shared across servers.

Design decisions:
- Separate sections for store, spool layout, converters and dial policy
- Converter templates and spool directories are validated at startup
"""

import socket
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Fax bridge configuration loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: FAX_OUTGOING_DIR=/tmp/fax python -m faxbridge

    Configuration sections:
    1. Store - relational job queue connection
    2. Spool - dialer and fax working directories, ownership
    3. Converters - external document/image transcoders
    4. Dial policy - constants written into every job descriptor
    5. Application - runtime behavior and admin API
    """

    # ===== Store Configuration =====
    database_url: str = Field(
        default="sqlite:///faxbridge.db",
        description="SQLAlchemy URL of the relational job queue"
    )
    server_name: str = Field(
        default_factory=socket.gethostname,
        min_length=1,
        description="Identity of this processing server (iaxfriends.name)"
    )
    server_name_marker: str | None = Field(
        default=None,
        description="When set, only poll if the server name contains this marker"
    )
    heartbeat_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between store heartbeat pings"
    )
    heartbeat_max_attempts: int = Field(
        default=3,
        ge=1, le=20,
        description="Failed pings tolerated before the heartbeat gives up"
    )

    # ===== Spool Configuration =====
    dialer_outgoing_dir: Path = Field(
        default=Path("/var/spool/asterisk/outgoing"),
        description="Dialer watch directory receiving .call descriptors"
    )
    fax_outgoing_dir: Path = Field(
        default=Path("/var/spool/asterisk/fax/outgoing"),
        description="Working directory for outbound documents and images"
    )
    fax_incoming_dir: Path = Field(
        default=Path("/var/spool/asterisk/fax/incoming"),
        description="Watch directory holding received faxes and their sidecars"
    )
    fax_quarantine_dir: Path = Field(
        default=Path("/var/spool/asterisk/fax/quarantine"),
        description="Destination for inbound sidecars that cannot be parsed"
    )
    dialer_uid: int | None = Field(
        default=None,
        ge=0,
        description="Owner uid applied to descriptors before handoff"
    )
    dialer_gid: int | None = Field(
        default=None,
        ge=0,
        description="Owner gid applied to descriptors before handoff"
    )

    # ===== Converter Configuration =====
    pdf_to_tiff_command: str = Field(
        default=(
            "gs -q -dNOPAUSE -dBATCH -sDEVICE=tiffg4 -sPAPERSIZE=letter "
            "-sOutputFile={output} {input}"
        ),
        description="Document to fax image converter ({input}/{output} placeholders)"
    )
    tiff_to_pdf_command: str = Field(
        default="tiff2pdf -o {output} {input}",
        description="Fax image to document converter ({input}/{output} placeholders)"
    )
    converter_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Converter processes are killed after this many seconds"
    )

    # ===== Dial Policy =====
    dial_channel_technology: str = Field(default="PJSIP")
    dial_max_retries: int = Field(default=0, ge=0)
    dial_retry_time: int = Field(default=300, ge=0)
    dial_wait_time: int = Field(default=45, ge=1)
    dial_archive: str = Field(default="yes", pattern="^(yes|no)$")
    dial_context: str = Field(default="fax", min_length=1)
    dial_extension: str = Field(default="out", min_length=1)
    dial_priority: int = Field(default=1, ge=1)

    # ===== Application Settings =====
    poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between worker iterations"
    )
    embedded_worker: bool = Field(
        default=False,
        description="Run the polling worker inside the admin app's lifespan"
    )
    internal_api_key: str = Field(
        default="dev_key_change_in_production_faxbridge",
        min_length=32,
        description="Shared secret for the admin API"
    )
    app_env: str = Field(
        default="development",
        pattern="^(development|staging|production|test)$",
        description="Application environment"
    )
    log_level: str = Field(
        default="info",
        pattern="^(debug|info|warning|error|critical)$",
        description="Logging level"
    )
    log_format: str = Field(
        default="console",
        pattern="^(json|console)$",
        description="Log output format (json for prod, console for dev)"
    )

    @field_validator("pdf_to_tiff_command", "tiff_to_pdf_command")
    @classmethod
    def validate_converter_command(cls, v: str) -> str:
        """Converter templates must reference both paths."""
        if "{input}" not in v or "{output}" not in v:
            raise ValueError("converter command must contain {input} and {output}")
        return v

    @model_validator(mode="after")
    def validate_directories(self):
        """Every spool directory must be distinct."""
        dirs = [
            self.dialer_outgoing_dir,
            self.fax_outgoing_dir,
            self.fax_incoming_dir,
            self.fax_quarantine_dir,
        ]
        if len({d.resolve() for d in dirs}) != len(dirs):
            raise ValueError("spool directories must be distinct")
        if self.app_env == "production" and self.internal_api_key.startswith("dev_key"):
            raise ValueError("Internal API key must be changed in production")
        return self

    @property
    def spool_directories(self) -> list[Path]:
        """Directories that must exist before a pipeline run."""
        return [
            self.dialer_outgoing_dir,
            self.fax_outgoing_dir,
            self.fax_incoming_dir,
            self.fax_quarantine_dir,
        ]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )


# Singleton instance - loaded once at module import
settings = Settings()
