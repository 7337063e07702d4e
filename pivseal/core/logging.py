"""
Secure Logging Module
=====================

Loggers for PivSeal with redaction of secrets that could reach a log line.

Security Features:
- PIN, token and key assignments are redacted
- Vault service tokens (s./hvs.) are redacted wherever they appear
- Long base64 runs (wrapped keys, ciphertext) are redacted
- Public key fingerprints ("EC:P-256:<hex>") are left readable
- Optional JSON lines and rotating log files
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Optional, Pattern

_ASSIGNMENT: Final[str] = r'["\']?\s*[=:]\s*(?!\[REDACTED\])[\["\']*[^\s"\',}\]]+["\']?'

# Patterns for sensitive data detection
_SENSITIVE_PATTERNS: Final[list[tuple[str, Pattern[str]]]] = [
    ("pin", re.compile(r'(?i)\b(pin|yubikey[_-]?pin)' + _ASSIGNMENT)),
    ("token", re.compile(r'(?i)\b(root[_-]?token|client[_-]?token|token|bearer)' + _ASSIGNMENT)),
    ("key", re.compile(r'(?i)\b(unseal[_-]?keys?|keys_b64|keys|private[_-]?key)' + _ASSIGNMENT)),
    ("secret", re.compile(r'(?i)\b(secret|shared[_-]?secret)' + _ASSIGNMENT)),
    ("token", re.compile(r'\b(?:hvs|hvb|s)\.[A-Za-z0-9_-]{6,}')),
    # Base64 runs not part of a fingerprint or path
    ("base64_secret", re.compile(r'(?<![\w:/.])[A-Za-z0-9+/]{40,}={0,2}')),
]

_REDACTED_TEXT: Final[str] = "[REDACTED]"

CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class SecureLogFilter(logging.Filter):
    """
    Log filter that removes sensitive information from log records.

    The record is always kept. Its message is rendered with its arguments,
    sanitized, and stored back without arguments.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._additional_patterns = additional_patterns or []

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.sanitize(record.getMessage())
        record.args = None
        return True

    def sanitize(self, text: str) -> str:
        """Remove sensitive data from text."""
        result = text

        for name, pattern in _SENSITIVE_PATTERNS:
            result = pattern.sub(f"{name}={_REDACTED_TEXT}", result)

        for pattern in self._additional_patterns:
            result = pattern.sub(_REDACTED_TEXT, result)

        return result


class StructuredLogFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that creates its directory on demand.

    Rejects paths containing traversal sequences.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 5 * 1024 * 1024,
        backupCount: int = 3,
        encoding: str = "utf-8",
    ) -> None:
        if ".." in Path(filename).parts:
            raise ValueError("Log path cannot contain path traversal sequences")

        log_path = Path(filename).expanduser().resolve()
        log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        super().__init__(
            str(log_path),
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
        )


def get_secure_logger(
    name: str = "pivseal",
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    enable_json: bool = False,
    max_file_size: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Configure a logger with automatic secret filtering.

    Child loggers (``pivseal.core.device.selector`` and so on) propagate
    into the handlers installed here. Calling this again replaces the
    handlers so the latest settings apply.

    Args:
        name: Logger name
        log_dir: Directory for the log file (file logging needs one)
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        enable_console: Log to stderr
        enable_file: Log to a rotating file in log_dir
        enable_json: Emit JSON lines instead of text
        max_file_size: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(getattr(logging, level.upper()))
    secure_filter = SecureLogFilter()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        if enable_json:
            console_handler.setFormatter(StructuredLogFormatter())
        else:
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        console_handler.addFilter(secure_filter)
        logger.addHandler(console_handler)

    if enable_file and log_dir:
        file_handler = SecureRotatingFileHandler(
            filename=Path(log_dir) / f"{name.replace('.', '_')}.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        if enable_json:
            file_handler.setFormatter(StructuredLogFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(secure_filter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger
