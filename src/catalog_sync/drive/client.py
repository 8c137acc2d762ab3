"""
Google Drive v3 client for public folder listings and file downloads.

Uses an API key (no OAuth). The key travels as a query parameter, so every
URL that reaches a log goes through core.security.sanitize_url first.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from catalog_sync.config import (
    DEFAULT_CDN_PROXY_TEMPLATE,
    DEFAULT_DRIVE_API_BASE,
    DEFAULT_RAW_RELAY_TEMPLATE,
    SyncConfig,
)
from catalog_sync.fetch import (
    CdnProxyStrategy,
    FetchedPayload,
    RawRelayStrategy,
    rejection_reason,
)
from catalog_sync.schemas.assets import DriveItem
from core.download.http_client import (
    DEFAULT_TIMEOUT_SECONDS,
    DownloadError,
    create_session,
    download_url,
)
from core.errors.exceptions import (
    CredentialError,
    PermanentError,
    PipelineError,
    ThrottlingError,
    ValidationError,
)
from core.logging.utilities import LoggedClass
from core.resilience.cancellation import CancellationToken, run_cancellable
from core.resilience.fallback import FallbackChain, FallbackStep
from core.resilience.retry import DEFAULT_RETRY, RetryConfig, retry_async

LIST_FIELDS = "nextPageToken,files(id,name,mimeType,parents)"

# Markers Google uses when the key itself is rejected
KEY_INVALID_MARKERS = ("keyInvalid", "API key not valid", "API_KEY_INVALID")

# 403 reasons that are quota related and worth retrying
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")

_FOLDER_PATH = re.compile(r"/folders/([A-Za-z0-9_-]+)")
_ID_PARAM = re.compile(r"id=([A-Za-z0-9_-]+)")
_LONG_ID = re.compile(r"([A-Za-z0-9_-]{25,})")
_RAW_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def extract_folder_id(reference: Optional[str]) -> Optional[str]:
    """
    Extract a Drive folder id from a share link or a raw id.

    Tries ``/folders/<id>``, ``id=<id>``, then any run of 25+ id
    characters. A bare id longer than 20 characters is returned as is.

    Returns:
        Folder id, or None when nothing id-like is present
    """
    if not reference:
        return None
    reference = reference.strip()

    for pattern in (_FOLDER_PATH, _ID_PARAM, _LONG_ID):
        match = pattern.search(reference)
        if match:
            return match.group(1)

    if len(reference) > 20 and _RAW_ID.match(reference):
        return reference
    return None


def direct_download_url(file_id: str) -> str:
    """Public download URL for a Drive file."""
    return f"https://drive.google.com/uc?export=download&id={file_id}"


def _error_payload(body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(body.decode("utf-8", errors="replace"))
    except ValueError:
        return {}
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"]
    return {}


def _error_reasons(error: Dict[str, Any]) -> List[str]:
    reasons = [str(e.get("reason", "")) for e in error.get("errors", []) if isinstance(e, dict)]
    for detail in error.get("details", []) or []:
        if isinstance(detail, dict) and detail.get("reason"):
            reasons.append(str(detail["reason"]))
    return reasons


def _is_key_rejection(message: str, reasons: List[str]) -> bool:
    text = " ".join([message, *reasons])
    return any(marker in text for marker in KEY_INVALID_MARKERS)


class DriveApiClient(LoggedClass):
    """
    Async client for the Drive v3 REST API.

    Usage:
        async with DriveApiClient(api_key=key) as client:
            children = await client.list_children(folder_id)
            fetched = await client.download_file(children[0].id)

    Args:
        api_key: Drive API key; required, passed explicitly
        base_url: API base URL
        page_size: Listing page size
        retry: Retry policy for listing calls
        timeout_seconds: Per-request timeout
        session: Shared aiohttp session; created lazily when omitted
        min_payload_bytes: Smallest acceptable download
    """

    log_component = "drive"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_DRIVE_API_BASE,
        page_size: int = 100,
        retry: RetryConfig = DEFAULT_RETRY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
        min_payload_bytes: int = 1000,
        cdn_proxy_template: str = DEFAULT_CDN_PROXY_TEMPLATE,
        raw_relay_template: str = DEFAULT_RAW_RELAY_TEMPLATE,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.retry = retry
        self.timeout_seconds = timeout_seconds
        self.min_payload_bytes = min_payload_bytes
        self._cdn_proxy = CdnProxyStrategy(cdn_proxy_template)
        self._raw_relay = RawRelayStrategy(raw_relay_template)
        self._session = session
        self._owns_session = session is None
        super().__init__()

    @classmethod
    def from_config(
        cls, config: SyncConfig, session: Optional[aiohttp.ClientSession] = None
    ) -> "DriveApiClient":
        return cls(
            api_key=config.drive_api_key,
            base_url=config.drive_api_base,
            page_size=config.drive_page_size,
            retry=config.retry,
            timeout_seconds=config.request_timeout_seconds,
            session=session,
            min_payload_bytes=config.drive_min_payload_bytes,
            cdn_proxy_template=config.cdn_proxy_template,
            raw_relay_template=config.raw_relay_template,
        )

    async def __aenter__(self) -> "DriveApiClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_session()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _require_key(self) -> None:
        if not self.api_key or self.api_key == "undefined":
            raise CredentialError(
                "Drive API_KEY is missing. Set DRIVE_API_KEY (or API_KEY) in the environment."
            )

    def _classify_error(self, error: DownloadError) -> PipelineError:
        """Turn a failed response into a typed error, spotting key rejections."""
        payload = _error_payload(error.body)
        message = str(payload.get("message", ""))
        reasons = _error_reasons(payload)

        if error.status_code in (400, 401, 403) and _is_key_rejection(message, reasons):
            return CredentialError(f"Drive API_KEY rejected: {message or 'key invalid'}")

        if error.status_code == 403 and any(r in RATE_LIMIT_REASONS for r in reasons):
            return ThrottlingError(f"Drive API rate limited: {message}")

        exc = error.to_exception()
        if message:
            exc.context["api_message"] = message
        return exc

    async def _get_json(
        self,
        path: str,
        params: Dict[str, Any],
        token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        GET a JSON document.

        The API is called directly with retries first. A 403, or a direct
        call that keeps failing, falls back to the raw relay of the same URL.

        Raises:
            CredentialError: Key missing or rejected (never retried or relayed)
            PermanentError: JSON error body
            UnreachableError: Direct calls and the relay both failed
        """
        self._require_key()
        url = f"{self.base_url}/{path.lstrip('/')}?{urlencode({**params, 'key': self.api_key})}"

        chain: FallbackChain[bytes] = FallbackChain(
            [
                FallbackStep(
                    "drive_api",
                    lambda: retry_async(
                        self._request_factory(url, token),
                        self.retry,
                        token,
                        operation_name="drive request",
                    ),
                ),
                FallbackStep(
                    self._raw_relay.name,
                    self._request_factory(self._raw_relay.build_url(url), token),
                ),
            ],
            label="Drive API unreachable",
            on_attempt=self._log_listing_attempt,
        )
        body = await chain.run(token)

        try:
            data = json.loads(body.decode("utf-8"))
        except ValueError as e:
            raise ValidationError("Drive API returned invalid JSON", cause=e)

        if isinstance(data, dict) and data.get("error"):
            err = data["error"] if isinstance(data["error"], dict) else {"message": data["error"]}
            message = str(err.get("message", err))
            if _is_key_rejection(message, _error_reasons(err)):
                raise CredentialError(f"Drive API_KEY rejected: {message}")
            raise PermanentError(f"Google API: {message}")

        if not isinstance(data, dict):
            raise ValidationError("Drive API returned unexpected payload")
        return data

    def _request_factory(self, url: str, token: Optional[CancellationToken]):
        async def attempt() -> bytes:
            session = self._ensure_session()
            response, error = await run_cancellable(
                download_url(url, session, self.timeout_seconds), token
            )
            if error is not None:
                raise self._classify_error(error)
            return response.content

        return attempt

    def _log_listing_attempt(self, name: str, outcome: str, reason: Optional[str]) -> None:
        if outcome == "error" and name == "drive_api":
            self._log(
                logging.WARNING,
                "Direct Drive API call failed, trying relay",
                strategy=name,
                error_message=reason,
            )

    async def list_children(
        self, folder_id: str, token: Optional[CancellationToken] = None
    ) -> List[DriveItem]:
        """
        List every non-trashed child of a folder, following pagination.

        Args:
            folder_id: Folder to list
            token: Cancellation token

        Returns:
            All children in API order
        """
        items: List[DriveItem] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            params: Dict[str, Any] = {
                "q": f"'{folder_id}' in parents and trashed=false",
                "fields": LIST_FIELDS,
                "pageSize": self.page_size,
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._get_json("files", params, token)
            pages += 1
            items.extend(DriveItem.from_api(entry) for entry in data.get("files") or [])

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        self._log(
            logging.DEBUG,
            "Folder listed",
            container_id=folder_id,
            children=len(items),
            pages=pages,
        )
        return items

    async def download_file(
        self, file_id: str, token: Optional[CancellationToken] = None
    ) -> FetchedPayload:
        """
        Download one file: API media endpoint, then CDN proxy, then raw relay.

        Raises:
            CredentialError: Key missing or rejected
            OperationCancelled: Token fired
            UnreachableError: Every node failed
        """
        self._require_key()
        public_url = direct_download_url(file_id)
        media_url = f"{self.base_url}/files/{file_id}?{urlencode({'alt': 'media', 'key': self.api_key})}"

        nodes = [
            ("drive_media", media_url),
            (self._cdn_proxy.name, self._cdn_proxy.build_url(public_url)),
            (self._raw_relay.name, self._raw_relay.build_url(public_url)),
        ]

        chain: FallbackChain[FetchedPayload] = FallbackChain(
            [FallbackStep(name, self._download_factory(name, url)) for name, url in nodes],
            accept=lambda fetched: rejection_reason(
                fetched.payload, fetched.content_type, self.min_payload_bytes
            ),
            label=f"Extraction failed for asset {file_id}",
        )
        return await chain.run(token)

    def _download_factory(self, name: str, url: str):
        async def attempt() -> FetchedPayload:
            session = self._ensure_session()
            response, error = await download_url(url, session, self.timeout_seconds)
            if error is not None:
                raise self._classify_error(error)
            return FetchedPayload(
                payload=response.content,
                content_type=response.content_type,
                strategy=name,
                url=url,
            )

        return attempt
