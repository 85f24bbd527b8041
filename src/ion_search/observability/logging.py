"""Structured JSON logging with trace correlation."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import sys
from typing import Any

import orjson

from ion_search.observability.tracing import get_log_context


_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON formatter with OpenTelemetry trace correlation."""

    MAX_MESSAGE_LEN = 2000
    MAX_VALUE_LEN = 500

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": self._truncate(record.getMessage(), self.MAX_MESSAGE_LEN),
            "logger": record.name,
            "trace_id": ctx.get("trace_id", ""),
            "span_id": ctx.get("span_id", ""),
        }

        if "." in record.name:
            log_entry["component"] = record.name.split(".")[-1]

        if index := ctx.get("index"):
            log_entry["index"] = index

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = self._truncate(value, self.MAX_VALUE_LEN) if isinstance(value, str) else value

        return orjson.dumps(log_entry, default=self._json_default).decode("utf-8")

    @staticmethod
    def _truncate(msg: str, limit: int) -> str:
        if len(msg) > limit:
            return msg[:limit] + "..."
        return msg

    @staticmethod
    def _json_default(value: Any) -> Any:
        if isinstance(value, (set, frozenset)):
            try:
                return sorted(value)
            except TypeError:
                return list(value)
        if isinstance(value, (bytes, bytearray)):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, Exception):
            return str(value)
        return repr(value)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    *,
    logger_levels: dict[str, str] | None = None,
) -> None:
    """Configure the ``ion_search`` logger tree.

    Only the package logger is touched so embedding applications keep control
    of the root logger.

    Args:
        level: Log level for ``ion_search`` (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit structured JSON logs when True
        logger_levels: Per-logger level overrides (logger name -> level string)
    """
    package_logger = logging.getLogger("ion_search")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    package_logger.addHandler(handler)
    package_logger.propagate = False

    for logger_name, logger_level in (logger_levels or {}).items():
        resolved = getattr(logging, logger_level.upper(), logging.INFO)
        logging.getLogger(logger_name).setLevel(resolved)
