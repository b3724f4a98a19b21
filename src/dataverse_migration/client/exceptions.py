"""Custom exceptions for Dataverse Bridge clients.

This module defines exception classes for handling the error conditions
that can occur while talking to the Dataverse Web API and while importing
records into it.
"""


class DataverseMigrationError(Exception):
    """Base exception for all Dataverse migration tool errors."""

    pass


class APIError(DataverseMigrationError):
    """Base class for API-related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        error_code: int | None = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            error_code: Organization service fault code (signed 32-bit int)
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        self.error_code = error_code
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and fault code."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.error_code is not None:
            msg = f"{msg} (fault {self.error_code})"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a record or metadata definition is not found (404 Not Found)."""

    pass


class ConflictError(APIError):
    """Raised when a conflict occurs (409 Conflict, or a duplicate key fault)."""

    pass


class DuplicateAssociationError(ConflictError):
    """Raised when an association between two records already exists.

    The organization service reports this with fault code -2147220937
    (0x80040237). Importers treat it as an idempotent success.
    """

    pass


class RateLimitError(APIError):
    """Raised when the service protection limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        error_code: int | None = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            error_code: Organization service fault code
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response, error_code)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(DataverseMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class ConfigurationError(DataverseMigrationError):
    """Raised when the configuration is missing or invalid."""

    pass


class MetadataError(DataverseMigrationError):
    """Raised when entity metadata is missing or cannot be interpreted."""

    pass


class RelationshipNotFoundError(MetadataError):
    """Raised when no many-to-many relationship matches an intersect entity."""

    def __init__(self, intersect_entity: str):
        """Initialize relationship lookup error.

        Args:
            intersect_entity: Logical name of the intersect entity that had no match
        """
        self.intersect_entity = intersect_entity
        super().__init__(
            f"No many-to-many relationship found for intersect entity '{intersect_entity}'"
        )
