"""
Async download module.

Provides HTTP retrieval decoupled from any storage backend:
    - create_session(): pooled aiohttp session
    - download_url(): in-memory GET returning (response, error)
    - DownloadResponse / DownloadError result types
"""

from core.download.http_client import (
    DownloadError,
    DownloadResponse,
    create_session,
    download_url,
    normalize_content_type,
    parse_retry_after,
)

__all__ = [
    "DownloadError",
    "DownloadResponse",
    "create_session",
    "download_url",
    "normalize_content_type",
    "parse_retry_after",
]
