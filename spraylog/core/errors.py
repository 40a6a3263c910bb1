"""Error taxonomy for the compliance core.

Every error carries enough context (entity id, prior state) for the caller
to render an actionable message.  Only ``ConflictError`` and
``ProviderError`` are retried automatically; everything else propagates.
"""
from __future__ import annotations


class SpraylogError(Exception):
    """Base class for all domain errors."""

    code = "SPRAYLOG_ERROR"

    def __init__(
        self,
        message: str,
        *,
        entity_id: object | None = None,
        state: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.state = state

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "entity_id": self.entity_id,
            "state": self.state,
        }


class ConflictError(SpraylogError):
    """A concurrent writer advanced the audit sequence first.

    The caller retries the whole mutation, not just the audit step.
    """

    code = "CONFLICT"


class ValidationError(SpraylogError):
    """Bad input (date range, frozen field, missing email).  Never retried."""

    code = "VALIDATION_ERROR"


class InvalidStateError(SpraylogError):
    """Illegal state transition, e.g. resend on a non-failed entry."""

    code = "INVALID_STATE"


class ProviderError(SpraylogError):
    """Transient email-delivery failure; retried per policy, then terminal."""

    code = "PROVIDER_ERROR"


class UnsupportedJurisdictionError(SpraylogError):
    """Unknown or malformed state code for a compliance report."""

    code = "UNSUPPORTED_JURISDICTION"


class NotFoundError(SpraylogError):
    """Entity does not exist or is not visible to the company."""

    code = "NOT_FOUND"


class ReportCancelledError(SpraylogError):
    """Report generation was cancelled or timed out."""

    code = "REPORT_CANCELLED"


class RendererUnavailableError(SpraylogError):
    """The PDF renderer (WeasyPrint and its system libraries) is not installed."""

    code = "RENDERER_UNAVAILABLE"
