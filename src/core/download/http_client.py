"""
Async HTTP GET for binary payloads.

Returns (DownloadResponse, None) on a 2xx response or (None, DownloadError)
otherwise, so callers decide whether a failure is worth raising. Non-2xx
bodies are kept (truncated) because some APIs explain credential problems
only in the error body.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import aiohttp

from core.errors.exceptions import (
    ConnectionError,
    ErrorCategory,
    PipelineError,
    TimeoutError,
    classify_http_status,
    error_for_status,
)
from core.security import sanitize_error_message, sanitize_url

DEFAULT_TIMEOUT_SECONDS = 60
ERROR_BODY_LIMIT = 4096
USER_AGENT = "catalog-sync/1.0 (+aiohttp)"


@dataclass
class DownloadResponse:
    """Successful GET response."""

    content: bytes
    status_code: int
    content_type: str = ""
    content_length: Optional[int] = None
    url: str = ""


@dataclass
class DownloadError:
    """Failed GET attempt with classification."""

    error_message: str
    error_category: ErrorCategory
    status_code: Optional[int] = None
    retry_after: Optional[float] = None
    body: bytes = b""
    url: str = ""

    def to_exception(self) -> PipelineError:
        """Build the typed exception matching this failure."""
        if self.status_code is not None:
            return error_for_status(
                self.status_code, sanitize_url(self.url), retry_after=self.retry_after
            )
        if "timeout" in self.error_message.lower():
            return TimeoutError(self.error_message)
        return ConnectionError(self.error_message)


def create_session(
    max_connections: int = 100,
    max_connections_per_host: int = 16,
    headers: Optional[Dict[str, str]] = None,
) -> aiohttp.ClientSession:
    """
    Create an aiohttp session with a bounded connection pool.

    Args:
        max_connections: Total connection pool size
        max_connections_per_host: Per-host connection limit
        headers: Extra default headers

    Returns:
        New ClientSession (caller closes it)
    """
    connector = aiohttp.TCPConnector(
        limit=max_connections,
        limit_per_host=max_connections_per_host,
    )
    default_headers = {"User-Agent": USER_AGENT}
    if headers:
        default_headers.update(headers)
    return aiohttp.ClientSession(connector=connector, headers=default_headers)


def normalize_content_type(raw: Optional[str]) -> str:
    """Strip parameters from a Content-Type header and lowercase it."""
    if not raw:
        return ""
    return raw.split(";", 1)[0].strip().lower()


def parse_retry_after(raw: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header value."""
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


async def download_url(
    url: str,
    session: aiohttp.ClientSession,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    headers: Optional[Dict[str, str]] = None,
) -> Tuple[Optional[DownloadResponse], Optional[DownloadError]]:
    """
    GET ``url`` and read the body into memory.

    Args:
        url: URL to fetch
        session: aiohttp session
        timeout: Total request timeout in seconds
        headers: Extra request headers

    Returns:
        (DownloadResponse, None) on 2xx, (None, DownloadError) otherwise
    """
    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers=headers,
            allow_redirects=True,
        ) as response:
            content_type = normalize_content_type(response.headers.get("Content-Type"))

            if not 200 <= response.status < 300:
                body = await response.content.read(ERROR_BODY_LIMIT)
                return None, DownloadError(
                    error_message=f"HTTP {response.status}: {sanitize_url(url)}",
                    error_category=classify_http_status(response.status),
                    status_code=response.status,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    body=body,
                    url=url,
                )

            content = await response.read()
            return (
                DownloadResponse(
                    content=content,
                    status_code=response.status,
                    content_type=content_type,
                    content_length=response.content_length,
                    url=url,
                ),
                None,
            )

    except asyncio.TimeoutError:
        return None, DownloadError(
            error_message=f"Request timeout after {timeout}s: {sanitize_url(url)}",
            error_category=ErrorCategory.TRANSIENT,
            url=url,
        )
    except aiohttp.ClientError as e:
        return None, DownloadError(
            error_message=f"Connection error: {sanitize_error_message(str(e))}",
            error_category=ErrorCategory.TRANSIENT,
            url=url,
        )
