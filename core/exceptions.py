"""
Custom exceptions for the export pipeline with structured error context.

This module provides the exception hierarchy used by the download and
process stages. Each exception carries context information for debugging
and for the error list recorded in stage checkpoints.

Exception Hierarchy:
    ExportException (base)
    ├── FetchError
    │   └── APIRequestError
    │       ├── NetworkError
    │       ├── RateLimitError
    │       ├── AuthenticationError
    │       └── ResourceNotFoundError
    ├── DataShapeError
    ├── StoreError
    │   ├── UnitNotFoundError
    │   └── CacheNotFoundError
    ├── CheckpointError
    ├── OutputError
    ├── NoUnitsFoundError
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ExportException(Exception):
    """
    Base exception for all export-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (page, entity id, path, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ExportException):
    """
    Mixin for transient errors the calling stage may retry.

    Use this for:
    - Network timeouts and connection failures
    - Rate limiting (HTTP 429)
    - Server errors (HTTP 5xx)
    """
    pass


class NonRetryableError(ExportException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    - Malformed documents
    """
    pass


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(ExportException):
    """Base exception for failures talking to the remote API."""
    pass


class APIRequestError(FetchError):
    """
    Exception raised when an API request fails.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
    """
    pass


class NetworkError(RetryableError, APIRequestError):
    """Timeouts, connection failures and 5xx responses."""
    pass


class RateLimitError(RetryableError, APIRequestError):
    """Rate limiting errors (HTTP 429)."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, APIRequestError):
    """Authentication failures (HTTP 401, 403). Fatal for a stage."""
    pass


class ResourceNotFoundError(NonRetryableError, APIRequestError):
    """Resource not found errors (HTTP 404)."""
    pass


# ============================================================================
# Data Errors
# ============================================================================

class DataShapeError(NonRetryableError):
    """
    Exception raised when a document does not have the expected shape.

    Context should include:
        - unit: Unit name or entity id of the document
        - field_errors: Validation errors (if available)
    """
    pass


# ============================================================================
# Store Errors
# ============================================================================

class StoreError(ExportException):
    """Base exception for durable unit store failures."""
    pass


class UnitNotFoundError(StoreError):
    """Raised when a unit is requested that is not in the store."""
    pass


class CacheNotFoundError(StoreError):
    """Raised when the cache directory required by a stage does not exist."""
    pass


class CheckpointError(ExportException):
    """
    Exception raised when a checkpoint cannot be read or written.

    Context should include:
        - path: Path of the checkpoint file
        - operation: Operation that failed (load, save)
    """
    pass


class OutputError(ExportException):
    """Raised when the CSV output file cannot be opened or written."""
    pass


class NoUnitsFoundError(ExportException):
    """Raised when the process stage finds nothing to process."""
    pass


class ConfigurationError(NonRetryableError):
    """Raised when required settings (base URL, access token) are missing."""
    pass
