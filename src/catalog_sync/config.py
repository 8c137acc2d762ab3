"""Catalog sync configuration from config.yaml and environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors.exceptions import ConfigurationError
from core.resilience.retry import RetryConfig

# Default config path: config.yaml in the working directory
DEFAULT_CONFIG_PATH = Path("config.yaml")

DEFAULT_DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"

# Proxy endpoints, {url} receives the percent-encoded target
DEFAULT_CDN_PROXY_TEMPLATE = "https://wsrv.nl/?url={url}&output=jpg&q=100"
DEFAULT_CORS_RELAY_TEMPLATE = "https://corsproxy.io/?{url}"
DEFAULT_RAW_RELAY_TEMPLATE = "https://api.allorigins.win/raw?url={url}"
DEFAULT_GALLERY_PROXY_TEMPLATE = "https://api.allorigins.win/get?url={url}"

KNOWN_STRATEGIES = ("cdn_proxy", "cors_relay", "raw_relay", "direct")
MODES = ("web", "drive", "gallery", "dropbox")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return int(default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value or [] if str(item).strip()]


@dataclass
class SyncConfig:
    """Retrieval, concurrency and output settings for one run.

    Load with SyncConfig.load_config() (config.yaml + env) or
    SyncConfig.from_env() (env only). Timing values are in seconds.
    """

    # Drive API
    drive_api_key: str = ""
    drive_api_base: str = DEFAULT_DRIVE_API_BASE
    drive_page_size: int = 100

    # Worker pool sizes per mode
    web_concurrency: int = 16
    drive_concurrency: int = 10
    gallery_concurrency: int = 8
    dropbox_concurrency: int = 16
    crawl_concurrency: int = 4
    max_crawl_depth: int = 32

    # HTTP
    request_timeout_seconds: float = 60.0
    min_payload_bytes: int = 100
    drive_min_payload_bytes: int = 1000

    retry: RetryConfig = field(default_factory=RetryConfig)

    # Fetch strategies, tried in this order
    strategies: List[str] = field(default_factory=lambda: list(KNOWN_STRATEGIES))
    cdn_proxy_template: str = DEFAULT_CDN_PROXY_TEMPLATE
    cors_relay_template: str = DEFAULT_CORS_RELAY_TEMPLATE
    raw_relay_template: str = DEFAULT_RAW_RELAY_TEMPLATE
    gallery_proxy_template: str = DEFAULT_GALLERY_PROXY_TEMPLATE

    # Output
    report_name: str = "SYNC_REPORT.csv"
    archive_prefix: str = "catalog_sync"

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables only.

        Optional environment variables (with defaults):
            DRIVE_API_KEY or API_KEY: Drive API key (default: empty)
            SYNC_DRIVE_API_BASE: Drive API base URL
            SYNC_WEB_CONCURRENCY: 16 (default)
            SYNC_DRIVE_CONCURRENCY: 10 (default)
            SYNC_GALLERY_CONCURRENCY: 8 (default)
            SYNC_DROPBOX_CONCURRENCY: 16 (default)
            SYNC_CRAWL_CONCURRENCY: 4 (default)
            SYNC_MAX_CRAWL_DEPTH: 32 (default)
            SYNC_REQUEST_TIMEOUT: 60 (default, seconds)
            SYNC_MIN_PAYLOAD_BYTES: 100 (default)
            SYNC_STRATEGIES: cdn_proxy,cors_relay,raw_relay,direct (default)
            SYNC_RETRY_ATTEMPTS: 2 (default)
            SYNC_REPORT_NAME: SYNC_REPORT.csv (default)

        Raises:
            ConfigurationError: If a value is malformed or out of range
        """
        return cls._build({})

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "SyncConfig":
        """Load configuration from config.yaml and environment variables.

        Configuration priority (highest to lowest):
        1. Environment variables
        2. config.yaml file (under 'sync:' key)
        3. Dataclass defaults

        Args:
            config_path: Explicit YAML path; must exist when given

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        explicit = config_path is not None
        config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        sync_data: Dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    yaml_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}", cause=e)
            if not isinstance(yaml_data, dict):
                raise ConfigurationError(f"{config_path} must contain a mapping")
            sync_data = yaml_data.get("sync", {}) or {}
        elif explicit:
            raise ConfigurationError(f"Config file not found: {config_path}")

        return cls._build(sync_data)

    @classmethod
    def _build(cls, data: Dict[str, Any]) -> "SyncConfig":
        defaults = cls()
        retry_data: Dict[str, Any] = data.get("retry", {}) or {}

        try:
            retry = RetryConfig(
                max_attempts=_env_int(
                    "SYNC_RETRY_ATTEMPTS",
                    retry_data.get("max_attempts", defaults.retry.max_attempts),
                ),
                base_delay=float(retry_data.get("base_delay", defaults.retry.base_delay)),
                throttle_delay=float(
                    retry_data.get("throttle_delay", defaults.retry.throttle_delay)
                ),
                backoff=str(retry_data.get("backoff", defaults.retry.backoff)),
                max_delay=float(retry_data.get("max_delay", defaults.retry.max_delay)),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid retry configuration: {e}", cause=e)

        api_key = os.getenv("DRIVE_API_KEY") or os.getenv("API_KEY") or data.get(
            "drive_api_key", ""
        )

        config = cls(
            drive_api_key=str(api_key or ""),
            drive_api_base=os.getenv(
                "SYNC_DRIVE_API_BASE", data.get("drive_api_base", defaults.drive_api_base)
            ),
            drive_page_size=int(data.get("drive_page_size", defaults.drive_page_size)),
            web_concurrency=_env_int(
                "SYNC_WEB_CONCURRENCY", data.get("web_concurrency", defaults.web_concurrency)
            ),
            drive_concurrency=_env_int(
                "SYNC_DRIVE_CONCURRENCY",
                data.get("drive_concurrency", defaults.drive_concurrency),
            ),
            gallery_concurrency=_env_int(
                "SYNC_GALLERY_CONCURRENCY",
                data.get("gallery_concurrency", defaults.gallery_concurrency),
            ),
            dropbox_concurrency=_env_int(
                "SYNC_DROPBOX_CONCURRENCY",
                data.get("dropbox_concurrency", defaults.dropbox_concurrency),
            ),
            crawl_concurrency=_env_int(
                "SYNC_CRAWL_CONCURRENCY",
                data.get("crawl_concurrency", defaults.crawl_concurrency),
            ),
            max_crawl_depth=_env_int(
                "SYNC_MAX_CRAWL_DEPTH", data.get("max_crawl_depth", defaults.max_crawl_depth)
            ),
            request_timeout_seconds=_env_float(
                "SYNC_REQUEST_TIMEOUT",
                data.get("request_timeout_seconds", defaults.request_timeout_seconds),
            ),
            min_payload_bytes=_env_int(
                "SYNC_MIN_PAYLOAD_BYTES",
                data.get("min_payload_bytes", defaults.min_payload_bytes),
            ),
            drive_min_payload_bytes=int(
                data.get("drive_min_payload_bytes", defaults.drive_min_payload_bytes)
            ),
            retry=retry,
            strategies=_parse_list(
                os.getenv("SYNC_STRATEGIES") or data.get("strategies", defaults.strategies)
            ),
            cdn_proxy_template=data.get("cdn_proxy_template", defaults.cdn_proxy_template),
            cors_relay_template=data.get("cors_relay_template", defaults.cors_relay_template),
            raw_relay_template=data.get("raw_relay_template", defaults.raw_relay_template),
            gallery_proxy_template=data.get(
                "gallery_proxy_template", defaults.gallery_proxy_template
            ),
            report_name=os.getenv("SYNC_REPORT_NAME", data.get("report_name", defaults.report_name)),
            archive_prefix=data.get("archive_prefix", defaults.archive_prefix),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check ranges and names.

        Raises:
            ConfigurationError: On the first invalid setting
        """
        for name in (
            "web_concurrency",
            "drive_concurrency",
            "gallery_concurrency",
            "dropbox_concurrency",
            "crawl_concurrency",
        ):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")

        if self.max_crawl_depth < 0:
            raise ConfigurationError("max_crawl_depth must be >= 0")
        if not 1 <= self.drive_page_size <= 1000:
            raise ConfigurationError("drive_page_size must be between 1 and 1000")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("request_timeout_seconds must be > 0")
        if self.min_payload_bytes < 0 or self.drive_min_payload_bytes < 0:
            raise ConfigurationError("payload thresholds must be >= 0")

        if not self.strategies:
            raise ConfigurationError("At least one fetch strategy is required")
        unknown = [s for s in self.strategies if s not in KNOWN_STRATEGIES]
        if unknown:
            raise ConfigurationError(
                f"Unknown fetch strategies: {', '.join(unknown)}. "
                f"Known: {', '.join(KNOWN_STRATEGIES)}"
            )

        for name in (
            "cdn_proxy_template",
            "cors_relay_template",
            "raw_relay_template",
            "gallery_proxy_template",
        ):
            if "{url}" not in getattr(self, name):
                raise ConfigurationError(f"{name} must contain a {{url}} placeholder")

        if not self.report_name or "/" in self.report_name:
            raise ConfigurationError("report_name must be a plain file name")
        if not self.report_name.lower().endswith((".csv", ".xlsx")):
            raise ConfigurationError("report_name must end in .csv or .xlsx")

    def concurrency_for(self, mode: str) -> int:
        """Default worker pool size for a retrieval mode."""
        if mode not in MODES:
            raise ConfigurationError(f"Unknown mode: {mode}")
        return getattr(self, f"{mode}_concurrency")
