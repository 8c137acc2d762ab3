"""
pytest configuration for catalog sync tests.

Adds src directory to Python path for imports and provides shared fakes.
"""

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from unittest.mock import AsyncMock

import aiohttp
import pytest

# Keep tests independent of a developer's real key
os.environ.pop("DRIVE_API_KEY", None)
os.environ.pop("API_KEY", None)

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.download.http_client import DownloadError, DownloadResponse  # noqa: E402
from core.errors.exceptions import ErrorCategory, classify_http_status  # noqa: E402

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 2048
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2048

Route = Union[
    Tuple[int, bytes, str],
    Tuple[int, bytes, str, Dict[str, str]],
    BaseException,
]


def ok(content: bytes = JPEG_BYTES, content_type: str = "image/jpeg", url: str = ""):
    """(response, None) tuple as returned by download_url."""
    return (
        DownloadResponse(
            content=content,
            status_code=200,
            content_type=content_type,
            content_length=len(content),
            url=url,
        ),
        None,
    )


def failed(status: Optional[int] = 503, body: bytes = b"", url: str = "", message: str = ""):
    """(None, error) tuple as returned by download_url."""
    return (
        None,
        DownloadError(
            error_message=message or f"HTTP {status}",
            error_category=classify_http_status(status) if status else ErrorCategory.TRANSIENT,
            status_code=status,
            body=body,
            url=url,
        ),
    )


class FakeDownloader:
    """
    Stand-in for core.download.http_client.download_url.

    Routes are matched by substring against the requested URL, first match
    wins. Each route returns a download_url tuple, or raises when the value
    is an exception. Unmatched URLs fail with a 404.
    """

    def __init__(self, routes: Optional[List[Tuple[str, object]]] = None):
        self.routes: List[Tuple[str, object]] = list(routes or [])
        self.calls: List[str] = []

    def add(self, fragment: str, result: object) -> "FakeDownloader":
        self.routes.append((fragment, result))
        return self

    async def __call__(self, url, session=None, timeout=None, headers=None):
        self.calls.append(url)
        for fragment, result in self.routes:
            if fragment in url:
                if callable(result) and not isinstance(result, tuple):
                    result = await result(url)
                if isinstance(result, BaseException):
                    raise result
                return result
        return failed(404, url=url)


@pytest.fixture
def mock_session():
    """aiohttp session that is never actually used for I/O."""
    session = AsyncMock(spec=aiohttp.ClientSession)
    session.closed = False
    return session
