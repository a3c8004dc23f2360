"""
Structured logging for pkg-updates.

Host and client share one setup. Records are rendered as one JSON object per
line, and anything passed through ``extra=`` (package, version, stage ...)
becomes a top-level key, so a download can be followed through the log by
filtering on those keys. A plain-text format is available for interactive
use.

The host logs to stdout. The client CLI writes its own results to stdout
and therefore sends its log to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from pkgupdates.config import LoggingConfig

ROOT_LOGGER_NAME = "pkgupdates"

TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Attributes every LogRecord carries; whatever else is on a record came from extra=
_BUILTIN_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _BUILTIN_RECORD_ATTRS and value is not None
    }


class JSONFormatter(logging.Formatter):
    """
    Render log records as single-line JSON objects.

    Fixed keys are ``timestamp`` (UTC, ISO 8601, taken from the record's
    creation time), ``level``, ``logger`` and ``message``, plus
    ``exception`` when the record carries a traceback. Extra fields follow.
    Values that are not JSON-serializable are written with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(_extra_fields(record))
        return json.dumps(entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the ``pkgupdates`` logger tree.

    Calling it again replaces the previous handler, so the host and client
    entry points can each call it once after loading their configuration.

    Args:
        config: Logging settings; when given, its values win over
            ``level``, ``json_format`` and ``log_to_stdout``.
        level: Level name (case-insensitive).
        json_format: Emit JSON lines instead of plain text.
        log_to_stdout: Attach a console handler at all. When False the
            logger has no handlers and stays silent.
        stream: Console stream for the handler (stdout when omitted).

    Returns:
        The package root logger.

    Example:
        >>> logger = setup_logging(level="DEBUG", stream=sys.stderr)
        >>> logger.info("Host started", extra={"port": 3000})
    """
    if config is not None:
        level = config.level
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    if log_to_stdout:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_LOG_FORMAT))
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger under ``pkgupdates``; module ``__name__`` is the usual argument."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
