"""
Structured logging with key=value and JSON output support.

Wraps the standard library ``logging`` module to emit snake_case event
names followed by structured fields, either as human-readable key=value
pairs (default) or as one JSON object per line.

The [StructuredFormatter][pushbrotr.core.logger.StructuredFormatter] reads
the ``structured_kv`` extra attached by
[Logger][pushbrotr.core.logger.Logger]. Installed on the root handlers by
[setup_logging()][pushbrotr.core.logger.setup_logging], it unifies output
from ``Logger`` and plain ``logging.getLogger()`` calls alike.

When the dispatcher runs inside a relay plugin, stdout and stderr belong to
the host process. ``setup_logging(log_file=..., console=False)`` sends all
records to a file instead.

Examples:
    ```python
    from pushbrotr.core.logger import Logger, setup_logging

    setup_logging("INFO", log_file="pushbrotr.log", console=False)
    logger = Logger("dispatcher")
    logger.info("dispatch_completed", event_id="ab12", notified=2)
    # Output: info dispatcher dispatch_completed event_id=ab12 notified=2
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
import sys
from pathlib import Path
from typing import Any, ClassVar


_TRUNCATION_SUFFIX = "...<truncated {} chars>"


def _truncate(value: Any, max_value_length: int | None) -> str:
    s = str(value)
    if max_value_length and len(s) > max_value_length:
        return s[:max_value_length] + _TRUNCATION_SUFFIX.format(len(s) - max_value_length)
    return s


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Format a dictionary as space-separated key=value pairs.

    Values are truncated to ``max_value_length`` characters. Empty values
    and values containing whitespace, equals signs, or quotes are escaped
    and wrapped in double quotes.

    Args:
        kwargs: Key-value pairs to format.
        max_value_length: Maximum characters per value before truncation.
            Pass None to disable truncation.
        prefix: String prepended to the output (default: single space).

    Returns:
        Formatted string, e.g. ``' event_id=ab12 reason="Bad token"'``.
        Empty string if *kwargs* is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for k, v in kwargs.items():
        s = _truncate(v, max_value_length)
        if not s or any(c in s for c in " =\"'"):
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{k}="{escaped}"')
        else:
            parts.append(f"{k}={s}")
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Formats every log record as ``level name message key=value ...``.

    With ``json_output=True`` the record becomes a single JSON object with
    ``timestamp``, ``level``, ``logger`` and ``message`` keys plus the
    structured fields.
    """

    def __init__(self, *, json_output: bool = False) -> None:
        super().__init__()
        self._json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if self._json_output:
            payload: dict[str, Any] = {
                "timestamp": datetime.datetime.fromtimestamp(
                    record.created, datetime.UTC
                ).isoformat(),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
                **extra,
            }
            if record.exc_info:
                payload["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class Logger:
    """Structured logger that appends keyword arguments as extra fields.

    All public methods mirror the standard logging API with an added
    ``**kwargs`` parameter carrying the structured fields.

    Examples:
        ```python
        logger = Logger("dispatcher")
        logger.warning("delivery_failed", pubkey="bob", reason="BadDeviceToken")
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(self, name: str, *, max_value_length: int | None = None) -> None:
        self._logger = logging.getLogger(name)
        self._max_value_length = (
            self._DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )

    @property
    def name(self) -> str:
        return self._logger.name

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        if not kwargs:
            return {}
        return {
            "structured_kv": {
                k: v
                if len(str(v)) <= self._max_value_length
                else _truncate(v, self._max_value_length)
                for k, v in kwargs.items()
            }
        }

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        # stacklevel 3 attributes the record to the caller of debug()/info()/...
        self._logger.log(
            level, msg, exc_info=exc_info, extra=self._make_extra(kwargs), stacklevel=3
        )

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)


def setup_logging(
    level: str = "INFO",
    *,
    log_file: str | Path | None = None,
    console: bool = True,
    json_output: bool = False,
) -> list[logging.Handler]:
    """Install [StructuredFormatter][pushbrotr.core.logger.StructuredFormatter]
    handlers on the root logger.

    Handlers installed by a previous call are removed first, so calling this
    again reconfigures logging instead of duplicating output.

    Args:
        level: Root log level name (``DEBUG``, ``INFO``, ...).
        log_file: Append records to this file when set.
        console: Emit records on stderr.
        json_output: One JSON object per line instead of key=value pairs.

    Returns:
        The handlers that were installed.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_pushbrotr", False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file is not None:
        handlers.append(logging.FileHandler(Path(log_file), encoding="utf-8"))

    formatter = StructuredFormatter(json_output=json_output)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._pushbrotr = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level.upper())
    return handlers
