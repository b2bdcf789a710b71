"""Per-job results returned by pipeline runs."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from faxbridge.core.exceptions import FaxBridgeError


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    PARTIAL = "partial"  # persisted, but on-disk cleanup failed


class PipelineOutcome(BaseModel):
    """Terminal result of one job or artifact within a batch."""

    subject: str
    status: OutcomeStatus
    stage: str | None = None
    error: dict[str, Any] | None = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def succeeded(cls, subject: str, warnings: list[dict[str, Any]] | None = None) -> "PipelineOutcome":
        return cls(subject=subject, status=OutcomeStatus.SUCCEEDED, warnings=warnings or [])

    @classmethod
    def from_error(
        cls,
        subject: str,
        stage: str,
        error: Exception,
        status: OutcomeStatus = OutcomeStatus.FAILED
    ) -> "PipelineOutcome":
        return cls(subject=subject, status=status, stage=stage, error=error_to_dict(error))

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED


class BatchReport(BaseModel):
    """Outcomes of one pipeline run; resolved only after every job finished."""

    pipeline: str
    outcomes: list[PipelineOutcome] = Field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def succeeded(self) -> int:
        return self.count(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    def summary(self) -> dict[str, int]:
        return {status.value: self.count(status) for status in OutcomeStatus}


def error_to_dict(error: Exception) -> dict[str, Any]:
    if isinstance(error, FaxBridgeError):
        return error.to_dict()
    return {
        "error": type(error).__name__,
        "message": str(error),
        "details": None,
        "retryable": False,
    }
