"""
Fetch strategy resolver.

Retrieves one binary payload for a reference by trying an ordered list of
strategies (image CDN proxy, CORS relay, raw relay, direct) until one
returns an acceptable payload:

    - HTTP 2xx
    - more than ``min_payload_bytes`` bytes
    - content type that is not an HTML page (proxies report errors as 200 OK)

Cancellation stops the resolver at once and never falls through to the
next strategy.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from urllib.parse import parse_qs, quote, urlparse

import aiohttp

from catalog_sync import metrics
from catalog_sync.config import (
    DEFAULT_CDN_PROXY_TEMPLATE,
    DEFAULT_CORS_RELAY_TEMPLATE,
    DEFAULT_RAW_RELAY_TEMPLATE,
    SyncConfig,
)
from core.download.http_client import DEFAULT_TIMEOUT_SECONDS, create_session, download_url
from core.errors.exceptions import ConfigurationError, ValidationError
from core.logging.utilities import LoggedClass
from core.resilience.cancellation import CancellationToken
from core.resilience.fallback import FallbackChain, FallbackStep

# Content types with a canonical extension
CONTENT_TYPE_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
}

# Extensions accepted from a reference path
KNOWN_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "bmp")
DEFAULT_EXTENSION = "jpg"

_DRIVE_FILE_PATH = re.compile(r"/file/d/([A-Za-z0-9_-]+)")


def encode_reference(reference: str) -> str:
    """Percent-encode a reference for use as a proxy query value."""
    return quote(reference, safe="-_.!~*'()")


def normalize_reference(reference: str) -> str:
    """
    Rewrite share links into direct-download form.

    Dropbox: ``www.dropbox.com`` -> ``dl.dropboxusercontent.com`` and
    ``dl=0`` -> ``dl=1`` (``dl=1`` appended when absent).
    Google Drive file links (``/file/d/<id>``, ``open?id=<id>``) become
    ``uc?export=download&id=<id>``. Everything else is returned trimmed.
    """
    target = reference.strip()

    if "dropbox.com" in target:
        target = target.replace("www.dropbox.com", "dl.dropboxusercontent.com")
        if "dl=0" in target:
            target = target.replace("dl=0", "dl=1")
        elif "dl=1" not in target:
            target += ("&" if "?" in target else "?") + "dl=1"
        return target

    parsed = urlparse(target)
    if parsed.netloc.endswith("drive.google.com"):
        match = _DRIVE_FILE_PATH.search(parsed.path)
        file_id = match.group(1) if match else None
        if file_id is None and parsed.path.rstrip("/").endswith("/open"):
            file_id = (parse_qs(parsed.query).get("id") or [None])[0]
        if file_id:
            return f"https://drive.google.com/uc?export=download&id={file_id}"

    return target


def infer_extension(content_type: Optional[str], reference: Optional[str]) -> str:
    """
    Map a payload to a file extension.

    The content type wins when it is a known image type. Otherwise the last
    path segment of the reference (query and fragment stripped) is checked
    against the known image extensions. Defaults to ``jpg``.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[mime]

    if reference:
        base = re.split(r"[#?]", reference, maxsplit=1)[0]
        segment = base.rstrip("/").rsplit("/", 1)[-1]
        if "." in segment:
            ext = segment.rsplit(".", 1)[1].lower()
            if ext in KNOWN_EXTENSIONS:
                return ext

    return DEFAULT_EXTENSION


def rejection_reason(payload: bytes, content_type: str, min_payload_bytes: int) -> Optional[str]:
    """Return why a 2xx payload is unacceptable, or None when it is fine."""
    if len(payload) <= min_payload_bytes:
        return f"payload too small ({len(payload)} bytes)"
    if "html" in (content_type or "").lower():
        return f"html response ({content_type})"
    return None


@dataclass
class FetchedPayload:
    """Accepted payload and how it was obtained."""

    payload: bytes
    content_type: str
    strategy: str
    url: str

    @property
    def byte_size(self) -> int:
        return len(self.payload)


class FetchStrategy:
    """One way of turning a reference into a request URL."""

    name = "direct"

    def build_url(self, reference: str) -> str:
        return reference


class DirectStrategy(FetchStrategy):
    """Request the reference itself."""

    name = "direct"


class _TemplateStrategy(FetchStrategy):
    default_template = "{url}"

    def __init__(self, template: Optional[str] = None):
        self.template = template or self.default_template
        if "{url}" not in self.template:
            raise ConfigurationError(f"{self.name} template must contain {{url}}")

    def build_url(self, reference: str) -> str:
        return self.template.replace("{url}", encode_reference(reference))


class CdnProxyStrategy(_TemplateStrategy):
    """Image CDN rewrite that re-encodes to JPEG."""

    name = "cdn_proxy"
    default_template = DEFAULT_CDN_PROXY_TEMPLATE


class CorsRelayStrategy(_TemplateStrategy):
    """Generic CORS relay."""

    name = "cors_relay"
    default_template = DEFAULT_CORS_RELAY_TEMPLATE


class RawRelayStrategy(_TemplateStrategy):
    """Relay returning the raw upstream body."""

    name = "raw_relay"
    default_template = DEFAULT_RAW_RELAY_TEMPLATE


def build_strategies(config: SyncConfig) -> List[FetchStrategy]:
    """Instantiate the configured strategies in order."""
    factories = {
        "cdn_proxy": lambda: CdnProxyStrategy(config.cdn_proxy_template),
        "cors_relay": lambda: CorsRelayStrategy(config.cors_relay_template),
        "raw_relay": lambda: RawRelayStrategy(config.raw_relay_template),
        "direct": DirectStrategy,
    }
    strategies = []
    for name in config.strategies:
        if name not in factories:
            raise ConfigurationError(f"Unknown fetch strategy: {name}")
        strategies.append(factories[name]())
    return strategies


def default_strategies() -> List[FetchStrategy]:
    return [CdnProxyStrategy(), CorsRelayStrategy(), RawRelayStrategy(), DirectStrategy()]


class FetchResolver(LoggedClass):
    """
    Resolve references to payloads through ordered fallback strategies.

    Usage:
        async with FetchResolver.from_config(config) as resolver:
            fetched = await resolver.resolve("https://www.dropbox.com/s/x/a.jpg?dl=0")

    Args:
        session: Shared aiohttp session; one is created lazily when omitted
        strategies: Ordered strategies (default cdn -> cors -> raw -> direct)
        min_payload_bytes: Payloads at or below this size are rejected
        timeout_seconds: Per-attempt request timeout
    """

    log_component = "fetch"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        strategies: Optional[Sequence[FetchStrategy]] = None,
        min_payload_bytes: int = 100,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        if not self.strategies:
            raise ConfigurationError("FetchResolver needs at least one strategy")
        self.min_payload_bytes = min_payload_bytes
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        super().__init__()

    @classmethod
    def from_config(
        cls, config: SyncConfig, session: Optional[aiohttp.ClientSession] = None
    ) -> "FetchResolver":
        return cls(
            session=session,
            strategies=build_strategies(config),
            min_payload_bytes=config.min_payload_bytes,
            timeout_seconds=config.request_timeout_seconds,
        )

    async def __aenter__(self) -> "FetchResolver":
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
        """Close the session if this resolver created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def resolve(
        self, reference: str, token: Optional[CancellationToken] = None
    ) -> FetchedPayload:
        """
        Fetch ``reference`` through the strategy chain.

        Raises:
            ValidationError: Empty reference
            OperationCancelled: Token fired before or during an attempt
            UnreachableError: Every strategy failed or was rejected
        """
        target = normalize_reference(reference)
        if not target:
            raise ValidationError("Empty reference")

        chain: FallbackChain[FetchedPayload] = FallbackChain(
            [
                FallbackStep(strategy.name, self._attempt_factory(strategy, target))
                for strategy in self.strategies
            ],
            accept=lambda fetched: rejection_reason(
                fetched.payload, fetched.content_type, self.min_payload_bytes
            ),
            label="Target blocked or unreachable",
            on_attempt=lambda name, outcome, reason: self._record_attempt(
                target, name, outcome, reason
            ),
        )
        fetched = await chain.run(token)

        self._log(
            logging.DEBUG,
            "Reference resolved",
            reference=target,
            strategy=fetched.strategy,
            content_type=fetched.content_type,
            bytes_downloaded=fetched.byte_size,
        )
        return fetched

    async def fetch_once(
        self, url: str, token: Optional[CancellationToken] = None
    ) -> FetchedPayload:
        """Single direct GET without fallback or acceptance checks."""
        session = self._ensure_session()
        if token is not None:
            response, error = await token.run(download_url(url, session, self.timeout_seconds))
        else:
            response, error = await download_url(url, session, self.timeout_seconds)
        if error is not None:
            raise error.to_exception()
        return FetchedPayload(
            payload=response.content,
            content_type=response.content_type,
            strategy="direct",
            url=url,
        )

    def _attempt_factory(self, strategy: FetchStrategy, target: str):
        async def attempt() -> FetchedPayload:
            session = self._ensure_session()
            url = strategy.build_url(target)
            response, error = await download_url(url, session, self.timeout_seconds)
            if error is not None:
                raise error.to_exception()
            return FetchedPayload(
                payload=response.content,
                content_type=response.content_type,
                strategy=strategy.name,
                url=url,
            )

        return attempt

    def _record_attempt(
        self, target: str, strategy: str, outcome: str, reason: Optional[str]
    ) -> None:
        metrics.record_fetch_attempt(strategy, outcome)
        if outcome != "accepted":
            self._log(
                logging.DEBUG,
                "Fetch strategy failed",
                reference=target,
                strategy=strategy,
                error_message=reason,
            )
