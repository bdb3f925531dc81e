"""
Domain Exceptions — raised by services, rendered by the API layer.
"""


class PaymentServiceError(Exception):
    """Base class."""

    status_code = 500
    error_code = "SERVER_ERROR"

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(PaymentServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(PaymentServiceError):
    """Record already moved past the expected state."""
    status_code = 409
    error_code = "CONFLICT"


class DuplicateReferenceError(ConflictError):
    error_code = "DUPLICATE_REFERENCE"


class GatewayError(PaymentServiceError):
    """External gateway call failed or timed out. Safe to retry verify."""
    status_code = 502
    error_code = "GATEWAY_ERROR"


class AuthenticationError(PaymentServiceError):
    status_code = 401
    error_code = "INVALID_SIGNATURE"


class ValidationError(PaymentServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
