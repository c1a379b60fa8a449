"""Typed errors shared across services and adapters."""

from enum import StrEnum


class ServiceErrorKind(StrEnum):
    """Closed set of failure kinds reported by the analysis model boundary."""

    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


TRANSIENT_KINDS = frozenset(
    {
        ServiceErrorKind.RATE_LIMITED,
        ServiceErrorKind.SERVER_ERROR,
        ServiceErrorKind.UNAVAILABLE,
    }
)

_SERVER_STATUS_CODES = frozenset({500, 502, 503})


def classify_status(status_code: int | None) -> ServiceErrorKind:
    """Map a provider HTTP status code to a service error kind."""
    if status_code is None:
        return ServiceErrorKind.UNAVAILABLE
    if status_code in {401, 403}:
        return ServiceErrorKind.UNAUTHORIZED
    if status_code == 429:  # noqa: PLR2004
        return ServiceErrorKind.RATE_LIMITED
    if status_code in _SERVER_STATUS_CODES:
        return ServiceErrorKind.SERVER_ERROR
    return ServiceErrorKind.REJECTED


class AnalysisServiceError(Exception):
    """Failure reported by the document-understanding service."""

    def __init__(
        self,
        message: str,
        *,
        kind: ServiceErrorKind,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class StructuredOutputError(Exception):
    """The model response could not be turned into a result object."""


class NoStructuredOutputError(StructuredOutputError):
    """No JSON object could be located in the model response."""


class MalformedOutputError(StructuredOutputError):
    """A JSON object was found but does not parse or fit the schema."""


class UploadRejectedError(ValueError):
    """Uploaded files or form values are not acceptable."""


class PaymentGatewayError(RuntimeError):
    """Payment provider call failed."""
