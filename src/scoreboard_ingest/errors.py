"""Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status it maps to and an optional ``extra``
dict that is merged into the JSON error body (for example the ingest id
of a rejected processing request).
"""

from __future__ import annotations

from typing import Any


class ScoreboardError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class Unauthenticated(ScoreboardError):
    """No credential, or a credential that cannot be parsed."""

    status_code = 401
    code = "AUTH_REQUIRED"


class Forbidden(ScoreboardError):
    """Disabled device, unknown device, credential mismatch or foreign ingest.

    Disabled and mismatched credentials deliberately share one message.
    """

    status_code = 403
    code = "FORBIDDEN"


class NotFound(ScoreboardError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(ScoreboardError):
    """Re-entrant processing of an ingest that is already ``extracting``."""

    status_code = 409
    code = "CONFLICT"


class ValidationError(ScoreboardError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ExtractionFailure(ScoreboardError):
    """The vision collaborator failed, returned garbage, or is not configured."""

    status_code = 500
    code = "EXTRACTION_FAILED"


class InternalError(ScoreboardError):
    status_code = 500
    code = "INTERNAL_ERROR"
