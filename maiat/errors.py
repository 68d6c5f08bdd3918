"""
Maiat — Error taxonomy.

NotFound, Validation, PaymentInvalid and UsageProofRequired reach the caller.
UpstreamDegraded and ConfigurationMissing are caught at stage boundaries,
logged, and folded into partial results.
"""
from typing import Optional


class MaiatError(Exception):
    """Base for all service errors."""
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.error, "message": self.message}
        body.update(self.context)
        return body


class NotFoundError(MaiatError):
    status_code = 404
    error = "not_found"


class ValidationError(MaiatError):
    status_code = 400
    error = "validation_error"


class PaymentInvalid(MaiatError):
    """A presented payment failed verification. ``reason`` is machine readable."""
    status_code = 402
    error = "Payment verification failed"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.error, "reason": self.reason, "protocol": "x402"}


class UsageProofRequired(MaiatError):
    status_code = 403
    error = "Usage proof required"

    def __init__(self, details: str, chain: Optional[str] = None):
        super().__init__(details)
        self.details = details
        self.chain = chain

    def to_dict(self) -> dict:
        return {"error": self.error, "details": self.details}


class UpstreamDegraded(MaiatError):
    """An external backend timed out, errored, or answered garbage."""
    status_code = 502
    error = "upstream_degraded"


class ConfigurationMissing(MaiatError):
    """An optional integration is not configured."""
    status_code = 503
    error = "configuration_missing"
