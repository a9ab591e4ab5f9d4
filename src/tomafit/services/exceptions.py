# tomafit/services/exceptions.py

import enum
from typing import Any, Optional

class ErrorKind(str, enum.Enum):
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ALREADY_PAID = "already_paid"
    GATEWAY_ERROR = "gateway_error"
    MALFORMED_REQUEST = "malformed_request"
    SIGNATURE_INVALID = "signature_invalid"
    DECRYPTION_FAILED = "decryption_failed"
    PERSISTENCE_ERROR = "persistence_error"
    PAYMENT_NOT_CONFIGURED = "payment_not_configured"
    CONFIGURATION_ERROR = "configuration_error"

class ServiceException(Exception):
    """
    Base exception for all service layer errors.

    `message` is safe to show to API callers; `context` carries diagnostic
    fields for logs only.
    """
    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(self.message)

class InvalidArgumentError(ServiceException):
    """Raised on bad input: unknown product, missing field, amount mismatch."""
    kind = ErrorKind.INVALID_ARGUMENT

class NotFoundError(ServiceException):
    """Raised when a user or order does not exist."""
    kind = ErrorKind.NOT_FOUND

class PermissionDeniedError(ServiceException):
    """Raised when the requesting user does not own the order."""
    kind = ErrorKind.FORBIDDEN

class AlreadyPaidError(ServiceException):
    kind = ErrorKind.ALREADY_PAID

class GatewayError(ServiceException):
    """
    Raised when the payment provider fails or answers with something unusable.
    `raw_response` is kept for diagnostics and never rendered to the client.
    """
    kind = ErrorKind.GATEWAY_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        raw_response: Optional[str] = None,
        **context: Any
    ):
        super().__init__(message, **context)
        self.status_code = status_code
        self.raw_response = raw_response

class MalformedRequestError(ServiceException):
    kind = ErrorKind.MALFORMED_REQUEST

class SignatureInvalidError(ServiceException):
    kind = ErrorKind.SIGNATURE_INVALID

class DecryptionFailedError(ServiceException):
    kind = ErrorKind.DECRYPTION_FAILED

class PersistenceError(ServiceException):
    kind = ErrorKind.PERSISTENCE_ERROR

class PaymentNotConfigured(ServiceException):
    kind = ErrorKind.PAYMENT_NOT_CONFIGURED

    def __init__(self, message: str = "payment is not configured", **context: Any):
        super().__init__(message, **context)

class ConfigurationError(ServiceException):
    """Raised if payment keys or certificates are present but unusable."""
    kind = ErrorKind.CONFIGURATION_ERROR
