"""Logging utilities with JSON formatting, redaction, and request correlation.

Limiter events carry subject identifiers (account ids, client IPs) through
their request keys. This module keeps those out of log output:
- request keys are logged as short digests (see hash_request_key)
- subject-bearing extras are redacted before formatting
- a request id from contextvars correlates limiter events with HTTP requests
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from throttlekit.core.config import LogSettings, settings
from throttlekit.core.errors import ConfigurationError

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Structured fields that may identify a subject or carry credentials
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "api_key",
    "x-api-key",
    "authorization",
    "token",
    "secret",
    "password",
    "cookie",
    "set-cookie",
    "redis_url",
    "request_key",
    "remote_ip",
    "client_ip",
    "x-forwarded-for",
}

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

REDACTED = "[REDACTED]"

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DEFAULT_LOG_FILE = "logs/throttlekit.log"


def set_request_id(request_id: str | None) -> None:
    """Store the current request id in a context variable."""

    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Fetch the current request id from context."""

    return _request_id_var.get()


def clear_request_id() -> None:
    """Clear any stored request id from context."""

    _request_id_var.set(None)


def hash_request_key(value: str) -> str:
    """Digest a serialized request key for logging without exposing it.

    Args:
        value: Serialized request key (see throttlekit.core.keys.normalize_key).

    Returns:
        First 16 hex characters of the SHA-256 digest.
    """

    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def _redact(value: Any, sensitive_keys: set[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive_keys else _redact(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v, sensitive_keys) for v in value]
    if isinstance(value, tuple):
        return tuple(_redact(v, sensitive_keys) for v in value)
    return value


def extra_fields(record: LogRecord, sensitive_keys: set[str]) -> dict[str, Any]:
    """Return the ``extra=`` fields of a record with sensitive values redacted.

    Limiter events put handle, strategy and key_hash here; a caller that
    also passes client_ip or an api_key gets those replaced by REDACTED.
    """

    return {
        key: REDACTED if key.lower() in sensitive_keys else _redact(value, sensitive_keys)
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive extras on the record itself, for any formatter."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in extra_fields(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(extra_fields(record, self.sensitive_keys))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_formatter(log_settings: LogSettings) -> logging.Formatter:
    log_format = log_settings.format.lower()
    if log_format == "json":
        return JsonFormatter(sensitive_keys=SENSITIVE_KEYS_DEFAULT)
    if log_format == "plain":
        return logging.Formatter(_PLAIN_FORMAT)
    raise ConfigurationError(
        f"Unknown log format: {log_settings.format!r}",
        details={"field": "format", "value": log_settings.format},
    )


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    output = log_settings.output.lower()
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output != "file":
        raise ConfigurationError(
            f"Unknown log output: {log_settings.output!r}",
            details={"field": "output", "value": log_settings.output},
        )

    file_path = Path(log_settings.file_path or _DEFAULT_LOG_FILE)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(file_path, encoding="utf-8")
    return RotatingFileHandler(
        file_path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> logging.Handler:
    """Route root logging through a single redacting handler.

    Handlers already on the root logger are replaced, so calling this again
    (e.g. after settings change) does not duplicate output.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.

    Returns:
        The installed handler.

    Raises:
        ConfigurationError: If LOG_FORMAT or LOG_OUTPUT is not recognised.
    """

    cfg = log_settings or settings.log

    # Validate the format before a log file gets created
    formatter = _build_formatter(cfg)
    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter(SENSITIVE_KEYS_DEFAULT))
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
    return handler
