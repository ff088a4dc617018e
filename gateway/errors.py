"""Error taxonomy for the hunt gateway

Every error carries a machine-readable ``code`` (returned to clients as
``{"error": code}``) and the HTTP status the API layer should answer with.
"""
from typing import Optional, Dict


class GatewayError(Exception):
    """Base class for all expected gateway failures"""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, code: Optional[str] = None, detail: Optional[str] = None):
        if code:
            self.code = code
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.code, "detail": self.detail}


class ValidationError(GatewayError):
    """Missing or malformed input. Rejected before any side effect."""
    status_code = 400
    code = "VALIDATION_ERROR"


class LocationRejected(GatewayError):
    """Physically implausible or low-precision location reading"""
    status_code = 422
    code = "LOCATION_REJECTED"


class ClaimConflict(GatewayError):
    """Target already claimed, expired, held by someone else, or in the wrong state"""
    status_code = 409
    code = "CLAIM_CONFLICT"


class NotFound(GatewayError):
    status_code = 404
    code = "NOT_FOUND"


class DuplicateRun(GatewayError):
    """Score for this (competitionId, runId) was already accepted"""
    status_code = 409
    code = "DUPLICATE_RUN"


class Unauthorized(GatewayError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(GatewayError):
    status_code = 403
    code = "FORBIDDEN"


class RateLimited(GatewayError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(detail=detail or f"Rate limit exceeded. Try again in {retry_after} seconds.")


class UpstreamUnavailable(GatewayError):
    """External competition service unreachable, timed out, or answered garbage"""
    status_code = 502
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, code: Optional[str] = None, detail: Optional[str] = None,
                 status_code: Optional[int] = None):
        if status_code is not None:
            self.status_code = status_code
        super().__init__(code, detail)


class UpstreamRejected(GatewayError):
    """External service answered with a well-formed, non-success JSON response"""
    code = "UPSTREAM_REJECTED"

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        super().__init__(detail=detail)


class ConfigurationError(GatewayError):
    """Required secret or setting is missing; the dependent feature refuses traffic"""
    status_code = 503
    code = "NOT_CONFIGURED"
