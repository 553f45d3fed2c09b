"""Custom exception hierarchy."""

import asyncio
from typing import Optional

import httpx

# HTTP status codes that indicate a transient provider condition
RETRYABLE_STATUS_CODES = frozenset({408, 429, 502, 503, 504})


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""

    @property
    def retryable(self) -> bool:
        return True


class APINetworkError(APIClientError):
    """Raised when the provider cannot be reached."""

    @property
    def retryable(self) -> bool:
        return True


class RetryExhaustedError(AppError):
    """Raised when a retryable operation fails on every attempt."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(
            f"Gave up after {attempts} attempt(s): {last_error}", last_error
        )
        self.attempts = attempts
        self.last_error = last_error


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class SessionFatalError(AppError):
    """Base exception for conditions that fail a whole validation session.

    ``category`` is the short message stored as the session's last error.
    """
    category = "validation session failed"

    def __init__(self, message: Optional[str] = None, original_error: Exception = None):
        super().__init__(message or self.category, original_error)


class DocumentIndexingFailedError(SessionFatalError):
    """A document of the session failed indexing."""
    category = "document indexing failed"


class IndexingTimeoutError(SessionFatalError):
    """Documents did not finish indexing within the poll budget."""
    category = "document indexing timed out"


class NoRequirementsError(SessionFatalError):
    """The unit has no requirements to validate against."""
    category = "no requirements found for this unit"


class SessionStateError(AppError):
    """Raised when an operation is not permitted in the session's current state."""
    pass


class SessionNotFoundError(AppError):
    """Raised when a validation session is not found."""
    pass


class DocumentNotFoundError(AppError):
    """Raised when a document is not found."""
    pass


class RequirementNotFoundError(AppError):
    """Raised when a requirement is not found for the unit."""
    pass


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error raised by an external call as transient or not."""
    if isinstance(error, APIClientError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, ConnectionError):
        return True
    return False
