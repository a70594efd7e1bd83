"""Custom exceptions for Recipe Bridge.

This module defines exception classes for handling the error conditions
that can occur while talking to the destination API, persisting migration
state and verifying the migrated data.
"""


class RecipeMigrationError(Exception):
    """Base exception for all recipe migration errors."""

    pass


class APIError(RecipeMigrationError):
    """Base class for API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class ClientError(APIError):
    """Raised when the destination rejects a request (4xx).

    Client errors are terminal: the payload will be rejected again on retry.
    """

    pass


class AuthenticationError(ClientError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(ClientError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(ClientError):
    """Raised when an endpoint or resource is not found (404 Not Found)."""

    pass


class ConflictError(ClientError):
    """Raised when a resource conflict occurs (409 Conflict)."""

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(RecipeMigrationError):
    """Raised when the transport fails (connection refused, reset, DNS, timeouts)."""

    pass


class RequestTimeoutError(NetworkError):
    """Raised when a connect or read timeout expires."""

    pass


class ValidationError(RecipeMigrationError):
    """Raised when a record fails structural validation before submission."""

    def __init__(self, message: str, errors: list[str] | None = None):
        """Initialize validation error.

        Args:
            message: Error message
            errors: Individual validation failures
        """
        super().__init__(message)
        self.errors = errors or []


class StateError(RecipeMigrationError):
    """Raised when state management errors occur."""

    pass


class CheckpointError(StateError):
    """Raised when checkpoint operations fail."""

    pass


class ConfigurationError(RecipeMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class MigrationError(RecipeMigrationError):
    """Raised when migration operations fail."""

    pass


class DataLoadError(MigrationError):
    """Raised when validated input data cannot be loaded."""

    pass


class MigrationCancelledError(MigrationError):
    """Raised when an operator stops a migration between items or batches."""

    pass


class VerificationError(RecipeMigrationError):
    """Raised when the post-migration verifier cannot complete."""

    pass
