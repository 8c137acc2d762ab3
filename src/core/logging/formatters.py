"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_log_context
from core.security import sanitize_url


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs to remove API keys before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "duration_ms",
        "http_status",
        "error_category",
        "error_message",
        "reference",
        "url",
        "strategy",
        "attempt",
        "retry_after",
        "content_type",
        "bytes_downloaded",
        # Batch tracking
        "batch_size",
        "concurrency",
        "records_succeeded",
        "records_failed",
        "cancelled",
        # Crawl tracking
        "container_id",
        "container_name",
        "depth",
        "children",
        "pages",
        # Archive tracking
        "members",
        "archive_bytes",
        # Run tracking
        "mode",
        "groups",
        "status",
    ]

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["reference", "url"]

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Sanitize value if it's a URL field."""
        if key in self.URL_FIELDS and isinstance(value, str):
            return sanitize_url(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with sanitized URLs."""
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        for key in ("run_id", "stage", "group"):
            if ctx[key]:
                log_entry[key] = ctx[key]

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._sanitize_value(field, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes the current group when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)

        if ctx["group"]:
            return f"{prefix} - [{ctx['group']}] {record.getMessage()}"

        return f"{prefix} - {record.getMessage()}"
