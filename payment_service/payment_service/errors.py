"""Error taxonomy surfaced to API callers."""

from typing import Optional


class PaymentServiceError(Exception):
    """Base class for errors rendered as structured JSON responses.

    Attributes:
        message: Human-readable message safe to return to the client.
        status_code: HTTP status used for the response.
        retryable: Whether a well-behaved client may retry without changes.
    """

    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(PaymentServiceError):
    status_code = 401


class RateLimited(PaymentServiceError):
    """Quota exceeded; carries the limiter result for Retry-After headers."""

    status_code = 429
    retryable = True

    def __init__(self, result, message: str = "Too many requests. Please try again later."):
        super().__init__(message)
        self.result = result

    @property
    def retry_after(self) -> Optional[int]:
        return self.result.retry_after


class InvalidInput(PaymentServiceError):
    status_code = 400


class UnsupportedCurrency(PaymentServiceError):
    status_code = 400


class AmountMismatch(PaymentServiceError):
    status_code = 400


class Forbidden(PaymentServiceError):
    status_code = 403


class NotFound(PaymentServiceError):
    status_code = 404


class Conflict(PaymentServiceError):
    status_code = 400


class InvalidState(PaymentServiceError):
    status_code = 400


class UpstreamError(PaymentServiceError):
    status_code = 500
    retryable = True


class Misconfigured(PaymentServiceError):
    status_code = 500
