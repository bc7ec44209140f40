"""Structured logging with JSON or key=value text output."""

from __future__ import annotations

import inspect
import json
import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TextIO


class LogFormat(str, Enum):
    """Output format of a structured logger."""

    JSON = "json"
    TEXT = "text"


@dataclass
class LogConfig:
    """Settings for :func:`new_logger`.

    ``level`` is one of debug, info, warn, error; ``output`` defaults to stderr.
    """

    level: str = "info"
    format: LogFormat = LogFormat.JSON
    output: TextIO | None = None
    add_source: bool = False


_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

_write_lock = threading.Lock()


def parse_level(text: str) -> int:
    """Map a level name to a :mod:`logging` level; unknown names give INFO."""
    match (text or "").strip().lower():
        case "debug":
            return logging.DEBUG
        case "warn" | "warning":
            return logging.WARNING
        case "error":
            return logging.ERROR
        case _:
            return logging.INFO


def _text_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value)
    if text == "" or not text.isprintable() or any(c in text for c in ' ="'):
        return json.dumps(text, ensure_ascii=False)
    return text


class StructuredLogger:
    """A logger that writes one structured record per call."""

    def __init__(
        self,
        level: int = logging.INFO,
        format: LogFormat = LogFormat.JSON,
        output: TextIO | None = None,
        add_source: bool = False,
        attrs: tuple[tuple[str, Any], ...] = (),
    ) -> None:
        self.level = level
        self.format = LogFormat.TEXT if format == LogFormat.TEXT else LogFormat.JSON
        self.output = output
        self.add_source = add_source
        self.attrs = tuple(attrs)

    def with_attrs(self, **kwargs: Any) -> StructuredLogger:
        """Return a child logger that adds ``kwargs`` to every record."""
        return StructuredLogger(
            level=self.level,
            format=self.format,
            output=self.output,
            add_source=self.add_source,
            attrs=self.attrs + tuple(kwargs.items()),
        )

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def _log(self, level: int, msg: str, kwargs: dict[str, Any]) -> None:
        if level < self.level:
            return
        source = None
        if self.add_source:
            frame = inspect.currentframe()
            caller = frame.f_back.f_back if frame and frame.f_back else None
            if caller is not None:
                source = {
                    "function": caller.f_code.co_name,
                    "file": caller.f_code.co_filename,
                    "line": caller.f_lineno,
                }
        timestamp = datetime.now().astimezone().isoformat(timespec="milliseconds")
        pairs = list(self.attrs) + list(kwargs.items())
        level_name = _LEVEL_NAMES.get(level, logging.getLevelName(level))

        if self.format == LogFormat.TEXT:
            parts = [f"time={timestamp}", f"level={level_name}"]
            if source is not None:
                parts.append(f"source={source['file']}:{source['line']}")
            parts.append(f"msg={_text_value(msg)}")
            parts.extend(f"{key}={_text_value(value)}" for key, value in pairs)
            line = " ".join(parts)
        else:
            record: dict[str, Any] = {"time": timestamp, "level": level_name}
            if source is not None:
                record["source"] = source
            record["msg"] = msg
            record.update(pairs)
            line = json.dumps(record, default=str, ensure_ascii=False)

        stream = self.output if self.output is not None else sys.stderr
        with _write_lock:
            stream.write(line + "\n")
            stream.flush()


def new_logger(config: LogConfig | None = None) -> StructuredLogger:
    """Build a logger from ``config``."""
    config = config or LogConfig()
    return StructuredLogger(
        level=parse_level(config.level),
        format=config.format,
        output=config.output,
        add_source=config.add_source,
    )


def new_default() -> StructuredLogger:
    """Return a JSON logger at info level writing to stderr."""
    return new_logger(LogConfig())


def new_debug() -> StructuredLogger:
    """Return a text logger at debug level, for local development."""
    return new_logger(LogConfig(level="debug", format=LogFormat.TEXT))


def with_request_id(logger: StructuredLogger, request_id: str) -> StructuredLogger:
    """Return a child logger carrying ``request_id``."""
    return logger.with_attrs(request_id=request_id)


def with_trace_id(logger: StructuredLogger, trace_id: str) -> StructuredLogger:
    """Return a child logger carrying ``trace_id``."""
    return logger.with_attrs(trace_id=trace_id)


def with_component(logger: StructuredLogger, component: str) -> StructuredLogger:
    """Return a child logger scoped to a named component."""
    return logger.with_attrs(component=component)