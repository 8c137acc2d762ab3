"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    # Enums
    ErrorCategory,
    # Base classes
    PipelineError,
    TransientError,
    PermanentError,
    FatalError,
    AuthError,
    # Transient errors
    ConnectionError,
    TimeoutError,
    ThrottlingError,
    ServiceUnavailableError,
    # Permanent errors
    NotFoundError,
    ForbiddenError,
    ValidationError,
    UnreachableError,
    ArchiveError,
    # Fatal errors
    ConfigurationError,
    CredentialError,
    InvalidReferenceError,
    # Cancellation
    OperationCancelled,
    # Classification utilities
    classify_http_status,
    classify_exception,
    error_for_status,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    "FatalError",
    "AuthError",
    # Transient errors
    "ConnectionError",
    "TimeoutError",
    "ThrottlingError",
    "ServiceUnavailableError",
    # Permanent errors
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "UnreachableError",
    "ArchiveError",
    # Fatal errors
    "ConfigurationError",
    "CredentialError",
    "InvalidReferenceError",
    # Cancellation
    "OperationCancelled",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "error_for_status",
    "wrap_exception",
]
