"""Domain models for analysis jobs and their lifecycle."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Literal

from nebenkosten_review.domain.analysis import AnalysisResult, ValidationStatus
from nebenkosten_review.domain.uploads import UploadedFile


class ErrorKind(StrEnum):
    """Failure tags reported to polling clients."""

    CONFIG_ERROR = "config_error"
    RATE_LIMIT = "rate_limit"
    ANALYSIS_FAILED = "analysis_failed"
    VALIDATION_UNREADABLE = "validation_nicht_lesbar"
    VALIDATION_NOT_A_STATEMENT = "validation_keine_abrechnung"
    VALIDATION_INCOMPLETE = "validation_unvollstaendig"
    FILES_EXPIRED = "files_expired"
    PAYMENT_INCOMPLETE = "payment_incomplete"
    STATUS_UNAVAILABLE = "status_unavailable"

    @classmethod
    def for_validation(cls, status: ValidationStatus) -> "ErrorKind":
        return cls(f"validation_{status.value}")


@dataclass(frozen=True)
class PendingInput:
    """Uploaded files waiting for the analysis job."""

    files: tuple[UploadedFile, ...]
    created_at: datetime
    email: str | None = None
    plan: str | None = None
    floor_area_m2: float | None = None
    amount_cents: int | None = None


@dataclass(frozen=True)
class JobSucceeded:
    """Terminal record for a completed analysis."""

    result: AnalysisResult
    completed_at: datetime


@dataclass(frozen=True)
class JobFailed:
    """Terminal record for a failed analysis."""

    message: str
    kind: ErrorKind
    completed_at: datetime
    refunded: bool | None = None


CompletedRecord = JobSucceeded | JobFailed


@dataclass(frozen=True)
class RefundRecord:
    """Marker for a refund attempt already made for a session."""

    issued: bool
    recorded_at: datetime


@dataclass(frozen=True)
class NoJob:
    """Nothing is known about the session."""


@dataclass(frozen=True)
class Pending:
    """Input is stored and waiting for a confirmed payment."""

    input: PendingInput


@dataclass(frozen=True)
class Active:
    """A job is running for the session."""


@dataclass(frozen=True)
class Done:
    record: JobSucceeded


@dataclass(frozen=True)
class Failed:
    record: JobFailed


JobState = NoJob | Pending | Active | Done | Failed


@dataclass(frozen=True)
class StatusReport:
    """Tagged outcome returned to polling clients."""

    status: Literal["processing", "done", "error"]
    result: AnalysisResult | None = None
    message: str | None = None
    kind: ErrorKind | None = None
    refunded: bool | None = None

    @classmethod
    def processing(cls) -> "StatusReport":
        return cls(status="processing")

    @classmethod
    def error(
        cls, message: str, kind: ErrorKind, refunded: bool | None = None
    ) -> "StatusReport":
        return cls(status="error", message=message, kind=kind, refunded=refunded)

    def to_payload(self) -> dict[str, object]:
        """Serialize for the HTTP polling endpoint."""
        if self.status == "done" and self.result is not None:
            return {"status": "done", "data": self.result.to_payload()}
        if self.status == "error":
            payload: dict[str, object] = {
                "status": "error",
                "error": self.message,
                "errorType": self.kind.value if self.kind else "unknown",
            }
            if self.refunded is not None:
                payload["refunded"] = self.refunded
            return payload
        return {"status": "processing"}


@dataclass(frozen=True)
class CheckoutStarted:
    """Checkout created for a new analysis request."""

    session_id: str
    redirect_url: str
