"""
Security helpers.

Provides redaction of credentials (API keys, signed-URL tokens) from URLs
and error messages before they reach logs or run reports.
"""

from core.security.sanitize import (
    SENSITIVE_PARAMS,
    sanitize_error_message,
    sanitize_url,
)

__all__ = [
    "SENSITIVE_PARAMS",
    "sanitize_error_message",
    "sanitize_url",
]
