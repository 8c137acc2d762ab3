"""
Exception types and error classification for catalog retrieval.

Provides:
- ErrorCategory enum for retry and abort decisions
- Typed exception hierarchy for retrieval, configuration and archive errors
- Error classification utilities
"""

import asyncio
from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on retry
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures on a single request
        PERMANENT: Failures that won't succeed on retry (404, HTML error page)
        FATAL: Configuration problems that must stop the whole run
               (missing or rejected API key, invalid root reference)
        CANCELLED: Caller-initiated abort, never counted as a failure
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    FATAL = "fatal"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """
    Base exception for all catalog sync errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error should trigger a retry."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    @property
    def is_fatal(self) -> bool:
        """Whether this error must abort the entire run."""
        return self.category == ErrorCategory.FATAL

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class ConnectionError(TransientError):
    """Network connection failed (DNS, reset, refused)."""

    pass


class TimeoutError(TransientError):
    """Operation timed out."""

    pass


class ThrottlingError(TransientError):
    """Rate limited (429) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


class ServiceUnavailableError(TransientError):
    """Service temporarily unavailable (5xx)."""

    pass


# =============================================================================
# Auth Errors (single request)
# =============================================================================


class AuthError(PipelineError):
    """Request was not authorized (401)."""

    category = ErrorCategory.AUTH


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class NotFoundError(PermanentError):
    """Resource not found (404)."""

    pass


class ForbiddenError(PermanentError):
    """Access denied (403) - sharing settings, not credentials."""

    pass


class ValidationError(PermanentError):
    """Payload or input validation failed."""

    pass


class UnreachableError(PermanentError):
    """Every retrieval strategy was exhausted for a reference."""

    def __init__(
        self,
        message: str,
        attempts: Optional[list] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.attempts = attempts or []


class ArchiveError(PermanentError):
    """Archive assembly failed."""

    pass


# =============================================================================
# Fatal Errors (Abort the Run)
# =============================================================================


class FatalError(PipelineError):
    """Base class for errors that stop the whole run immediately."""

    category = ErrorCategory.FATAL

    @property
    def is_retryable(self) -> bool:
        return False


class ConfigurationError(FatalError):
    """Invalid or missing configuration."""

    pass


class CredentialError(ConfigurationError):
    """API credential missing or rejected by the backing service."""

    pass


class InvalidReferenceError(FatalError):
    """Root reference is structurally invalid (cannot identify a container)."""

    pass


# =============================================================================
# Cancellation
# =============================================================================


class OperationCancelled(PipelineError):
    """Run was cancelled by the caller."""

    category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Operation cancelled", cause: Optional[Exception] = None):
        super().__init__(message, cause)

    @property
    def is_retryable(self) -> bool:
        return False


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def error_for_status(status_code: int, url: str, retry_after: Optional[float] = None) -> PipelineError:
    """
    Build the typed exception for a non-2xx HTTP response.

    Args:
        status_code: HTTP response status
        url: Request URL (already sanitized) for the message
        retry_after: Parsed Retry-After header, if any

    Returns:
        PipelineError subclass matching the status
    """
    if status_code == 429:
        return ThrottlingError(f"Rate limited (429): {url}", retry_after=retry_after)
    if status_code == 401:
        return AuthError(f"Unauthorized (401): {url}")
    if status_code == 403:
        return ForbiddenError(f"Forbidden (403): {url}")
    if status_code == 404:
        return NotFoundError(f"Not found (404): {url}")
    if status_code == 408:
        return TimeoutError(f"Request timeout (408): {url}")
    if status_code >= 500:
        return ServiceUnavailableError(f"Server error ({status_code}): {url}")
    if 400 <= status_code < 500:
        return PermanentError(f"Client error ({status_code}): {url}")
    return PipelineError(f"HTTP error ({status_code}): {url}")


def classify_exception(exc: BaseException) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, asyncio.CancelledError):
        return ErrorCategory.CANCELLED

    if isinstance(exc, asyncio.TimeoutError):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "clientconnectorerror",
        "serverdisconnectederror",
        "connection refused",
        "connection reset",
        "name resolution",
        "dns",
        "socket",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if "429" in exc_str or "rate limit" in exc_str:
        return ErrorCategory.TRANSIENT

    if "403" in exc_str or "forbidden" in exc_str:
        return ErrorCategory.PERMANENT

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: BaseException,
    default_class: type = PipelineError,
    context: Optional[dict] = None,
) -> PipelineError:
    """
    Wrap a generic exception in appropriate PipelineError subclass.

    Args:
        exc: Exception to wrap
        default_class: Class to use if can't classify
        context: Additional context to include

    Returns:
        Appropriate PipelineError subclass instance
    """
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc) or type(exc).__name__
    lowered = exc_str.lower()

    if category == ErrorCategory.CANCELLED:
        return OperationCancelled(cause=exc)  # type: ignore[arg-type]

    if category == ErrorCategory.TRANSIENT:
        if isinstance(exc, asyncio.TimeoutError) or "timeout" in lowered:
            return TimeoutError(exc_str, cause=exc, context=context)
        if "429" in lowered:
            return ThrottlingError(exc_str, cause=exc, context=context)
        return ConnectionError(exc_str, cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        if "404" in lowered or "not found" in lowered:
            return NotFoundError(exc_str, cause=exc, context=context)
        if "403" in lowered or "forbidden" in lowered:
            return ForbiddenError(exc_str, cause=exc, context=context)
        return PermanentError(exc_str, cause=exc, context=context)

    return default_class(exc_str, cause=exc, context=context)
