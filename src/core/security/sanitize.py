"""
URL and error message sanitization for logging.

The Drive API key travels as a ``key=`` query parameter, and proxy
rewrites embed the full target URL (including its own query) as an
encoded parameter, so both forms are redacted.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

# Query parameters that may contain sensitive tokens
SENSITIVE_PARAMS = {
    "key",
    "api_key",
    "apikey",
    "token",
    "access_token",
    "sig",
    "signature",
    "x-amz-signature",
    "x-amz-credential",
    "x-amz-security-token",
    "secret",
    "password",
    "auth",
}

REDACTED = "[REDACTED]"


def sanitize_url(url: str) -> str:
    """
    Remove sensitive query parameters from URL.

    Preserves the path and structure for debugging while removing
    tokens that could grant access if exposed in logs.

    Args:
        url: URL that may contain sensitive parameters

    Returns:
        URL with sensitive parameters replaced with [REDACTED]
    """
    if not url:
        return url

    try:
        parsed = urlparse(url)
    except ValueError:
        return url

    if not parsed.query:
        return url

    params = []
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        if key.lower() in SENSITIVE_PARAMS:
            params.append((key, REDACTED))
        elif value.startswith(("http://", "https://")):
            # Proxied target carried as a parameter
            params.append((key, sanitize_url(value)))
        else:
            params.append((key, value))

    return urlunparse(parsed._replace(query=urlencode(params, safe="[]/:")))


# Patterns that may contain sensitive data in error messages
SENSITIVE_PATTERNS = [
    (re.compile(r'(?<![a-z])key=[^&\s"\']+', re.IGNORECASE), f"key={REDACTED}"),
    (re.compile(r'token=[^&\s"\']+', re.IGNORECASE), f"token={REDACTED}"),
    (re.compile(r'sig=[^&\s"\']+', re.IGNORECASE), f"sig={REDACTED}"),
    (re.compile(r"bearer\s+[a-zA-Z0-9\-_.]+", re.IGNORECASE), f"bearer {REDACTED}"),
    (re.compile(r"AIza[0-9A-Za-z\-_]{20,}"), REDACTED),  # Google API key shape
]


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """
    Remove potentially sensitive data from error messages.

    Applies pattern-based redaction and truncates to max_length.

    Args:
        msg: Error message that may contain sensitive data
        max_length: Maximum length of returned message

    Returns:
        Sanitized and truncated error message
    """
    if not msg:
        return msg

    for pattern, replacement in SENSITIVE_PATTERNS:
        msg = pattern.sub(replacement, msg)

    if len(msg) > max_length:
        msg = msg[: max_length - 3] + "..."

    return msg
