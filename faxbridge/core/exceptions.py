"""
Error taxonomy of the fax bridge.

Every failure a pipeline step can report is a FaxBridgeError carrying an
ErrorCode, a details dict for the outcome record, and a retryable flag that
tells an operator whether the next poll may clear it on its own. The admin
API maps codes to HTTP statuses in faxbridge.main.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standardized error codes.

    Naming convention: <DOMAIN>_<NUMBER>
    - FMT_xxx: Document format errors
    - CONV_xxx: External converter errors
    - STORE_xxx: Relational store errors
    - SPOOL_xxx: Filesystem/spool errors
    - META_xxx: Inbound sidecar errors
    """

    # Format errors
    UNSUPPORTED_FORMAT = "FMT_001"
    INVALID_DESCRIPTOR_VALUE = "FMT_002"

    # Converter errors
    CONVERSION_FAILED = "CONV_001"
    CONVERSION_TIMEOUT = "CONV_002"

    # Store errors
    NOT_FOUND = "STORE_001"
    STORE_FAILURE = "STORE_002"
    CLAIM_CONFLICT = "STORE_003"

    # Spool errors
    SPOOL_FAILURE = "SPOOL_001"

    # Metadata errors
    MALFORMED_METADATA = "META_001"


class FaxBridgeError(Exception):
    """
    Base exception for all fax bridge failures.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        details: Additional context (dict)
        retryable: Whether re-polling may succeed without operator action

    Usage:
        try:
            await store.transition_state(job.id, FaxState.PROCESSING)
        except FaxBridgeError as e:
            logger.error("transition_failed",
                         error_code=e.error_code.value,
                         retryable=e.retryable)
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORE_FAILURE,
        details: Any = None,
        retryable: bool = False
    ):
        self.message = message
        self.error_code = error_code
        self.details = details
        self.retryable = retryable
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for outcomes and API responses.

        Returns:
            dict: Structured error data suitable for JSON responses
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable
        }

    def __str__(self) -> str:
        """String representation for logging."""
        return f"{self.error_code.value}: {self.message}"


class UnsupportedFormatError(FaxBridgeError):
    """
    Raised when a job's declared filename is not a document we can convert.

    Not retryable: the job has to be fixed by an operator.
    """

    def __init__(self, filename: str, expected: str = ".pdf"):
        super().__init__(
            message=f"Only handling {expected} files, got {filename!r}",
            error_code=ErrorCode.UNSUPPORTED_FORMAT,
            details={"filename": filename, "expected": expected},
            retryable=False
        )
        self.filename = filename


class InvalidDescriptorValueError(FaxBridgeError):
    """
    Raised when a value bound for the call file is empty where required or
    contains a line break.

    Not retryable: the job or trunk row has to be fixed by an operator.
    """

    def __init__(self, field: str, value: str):
        super().__init__(
            message=f"Invalid value for descriptor field {field}: {value!r}",
            error_code=ErrorCode.INVALID_DESCRIPTOR_VALUE,
            details={"field": field, "value": value},
            retryable=False
        )
        self.field = field


class ConversionError(FaxBridgeError):
    """
    Raised when an external converter cannot be spawned, exits non-zero
    or exceeds its timeout.

    Usually transient (disk pressure, converter crash), so retryable.
    Any output file written by the failed run must not be referenced.

    Attributes:
        command: Argument vector that was executed
        exit_status: Process exit status (None when it never ran or timed out)
        stderr: Decoded standard error output
    """

    def __init__(
        self,
        command: list[str],
        exit_status: int | None,
        stderr: str,
        error_code: ErrorCode = ErrorCode.CONVERSION_FAILED
    ):
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(
            message=f"Converter {command[0] if command else '?'} failed with status {exit_status}",
            error_code=error_code,
            details={"command": command, "exit_status": exit_status, "stderr": stderr[-2000:]},
            retryable=True
        )


class NotFoundError(FaxBridgeError):
    """
    Raised when a lookup matches zero rows or more than one row.

    Ambiguous routing data is an error, never a pick-first.
    Not retryable without a data fix.
    """

    def __init__(self, message: str, details: Any = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.NOT_FOUND,
            details=details,
            retryable=False
        )


class MalformedMetadataError(FaxBridgeError):
    """
    Raised when an inbound sidecar cannot be parsed or validated.

    The artifact is quarantined instead of being retried every poll.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Malformed fax metadata in {path}: {reason}",
            error_code=ErrorCode.MALFORMED_METADATA,
            details={"path": path, "reason": reason},
            retryable=False
        )
        self.path = path


class StoreError(FaxBridgeError):
    """
    Raised when a store operation fails; the transaction has been rolled back.

    Retryable: connection drops and lock timeouts are transient.
    """

    def __init__(self, message: str, details: Any = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.STORE_FAILURE,
            details=details,
            retryable=True
        )


class ClaimConflictError(FaxBridgeError):
    """
    Raised when a conditional state transition finds the row already moved.

    For the created -> processing claim this means another poller owns the
    job; callers report it as skipped, not failed.
    """

    def __init__(self, job_id: int, expected_state: str):
        super().__init__(
            message=f"Job {job_id} is no longer in state {expected_state!r}",
            error_code=ErrorCode.CLAIM_CONFLICT,
            details={"job_id": job_id, "expected_state": expected_state},
            retryable=False
        )
        self.job_id = job_id


class SpoolError(FaxBridgeError):
    """
    Raised when a filesystem operation on a spool directory fails.

    Retryability depends on the cause (EACCES needs an operator, a full
    disk may clear), so it is taken from the caller.
    """

    def __init__(self, operation: str, path: str, reason: str, retryable: bool = False):
        super().__init__(
            message=f"Spool {operation} failed for {path}: {reason}",
            error_code=ErrorCode.SPOOL_FAILURE,
            details={"operation": operation, "path": path, "reason": reason},
            retryable=retryable
        )
        self.operation = operation
        self.path = path
