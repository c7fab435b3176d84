# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Logging setup for mcpconnect.

Everything goes through the standard library.  ``setup_logger`` attaches a
single managed handler to the root logger; engine modules obtain child loggers
via ``get_logger("mcpconnect.<module>")``.  Records that carry a
``duration_ms`` attribute (request round-trips, handshakes) get a
``[12.34 ms]`` suffix in the text formatters and a ``context.duration_ms``
field in JSON output.
"""

from __future__ import annotations

from collections.abc import Callable
import json
import logging
import os
from typing import Any, ClassVar, Final


RESET: Final[str] = "\033[0m"

DEBUG_COLOR: Final[str] = "\033[36m"
INFO_COLOR: Final[str] = "\033[32m"
WARNING_COLOR: Final[str] = "\033[33m"
ERROR_COLOR: Final[str] = "\033[1;31m"
CRITICAL_COLOR: Final[str] = "\033[1;35m"
LOGGER_COLOR: Final[str] = "\033[94m"
DURATION_COLOR: Final[str] = "\033[90m"

DEFAULT_LOGGER_NAME: Final[str] = "mcpconnect"
ENV_LOG_LEVEL: Final[str] = "MCPCONNECT_LOG_LEVEL"
ENV_LOG_JSON: Final[str] = "MCPCONNECT_LOG_JSON"
ENV_NO_COLOR: Final[str] = "NO_COLOR"
DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"

JsonSerializer = Callable[[dict[str, Any]], str]
PayloadTransformer = Callable[[dict[str, Any]], dict[str, Any]]

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "context", "taskName"}


def _duration_suffix(record: logging.LogRecord) -> str | None:
    duration = getattr(record, "duration_ms", None)
    if isinstance(duration, (int, float)):
        return f"[{duration:.2f} ms]"
    return None


class PlainFormatter(logging.Formatter):
    """Text formatter that appends the request duration when present."""

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        suffix = _duration_suffix(record)
        return f"{rendered} {suffix}" if suffix else rendered


class ColoredFormatter(PlainFormatter):
    """ANSI-colored variant of :class:`PlainFormatter`.

    Override ``LEVEL_COLORS`` to change the palette.
    """

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": DEBUG_COLOR,
        "INFO": INFO_COLOR,
        "WARNING": WARNING_COLOR,
        "ERROR": ERROR_COLOR,
        "CRITICAL": CRITICAL_COLOR,
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname, name = record.levelname, record.name
        record.levelname = f"{self.LEVEL_COLORS.get(levelname, '')}{levelname}{RESET}"
        record.name = f"{LOGGER_COLOR}{name}{RESET}"
        try:
            rendered = logging.Formatter.format(self, record)
        finally:
            record.levelname, record.name = levelname, name

        suffix = _duration_suffix(record)
        if suffix:
            rendered = f"{rendered} {DURATION_COLOR}{suffix}{RESET}"
        return rendered


class StructuredJSONFormatter(logging.Formatter):
    """Serialize log records into JSON using a caller-provided serializer."""

    def __init__(
        self,
        serializer: JsonSerializer,
        *,
        datefmt: str | None = None,
        payload_transformer: PayloadTransformer | None = None,
    ) -> None:
        super().__init__(datefmt=datefmt)
        self._serializer = serializer
        self._transformer = payload_transformer or (lambda payload: payload)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        context: dict[str, Any] = {}
        explicit = record.__dict__.get("context")
        if isinstance(explicit, dict):
            context.update(explicit)
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in context:
                continue
            context[key] = value
        if context:
            payload["context"] = context

        return self._serializer(self._transformer(payload))


class MCPConnectHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Handler installed by :func:`setup_logger`; used to detect prior setup."""


def _installed_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in root.handlers if isinstance(handler, MCPConnectHandler)]


def _env_flag(key: str) -> bool:
    value = os.getenv(key)
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(ENV_LOG_LEVEL) or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(
    *,
    level: int | str | None = None,
    use_json: bool | None = None,
    use_color: bool | None = None,
    json_serializer: JsonSerializer | None = None,
    payload_transformer: PayloadTransformer | None = None,
    fmt: str | None = None,
    datefmt: str | None = DEFAULT_DATEFMT,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level; falls back to ``MCPCONNECT_LOG_LEVEL`` then INFO.
        use_json: Emit JSON lines; defaults to ``MCPCONNECT_LOG_JSON``.
        use_color: Colorize text output; disabled by ``NO_COLOR`` or JSON mode.
        json_serializer: Converts the payload dict to a string (e.g. ``orjson``).
        payload_transformer: Adjusts the payload before serialization.
        fmt: Format string for text output.
        datefmt: Date format for text output.
        force: Replace a handler installed by an earlier call.
    """
    root = logging.getLogger()
    existing = _installed_handlers(root)
    if existing and not force:
        return
    for handler in existing:
        root.removeHandler(handler)
        handler.close()

    resolved_level = _resolve_level(level)
    root.setLevel(resolved_level)

    json_mode = _env_flag(ENV_LOG_JSON) if use_json is None else use_json
    if use_color is None:
        use_color = not json_mode and not os.getenv(ENV_NO_COLOR)

    formatter: logging.Formatter
    if json_mode:
        formatter = StructuredJSONFormatter(
            json_serializer or (lambda payload: json.dumps(payload, ensure_ascii=False, default=str)),
            datefmt=datefmt,
            payload_transformer=payload_transformer,
        )
    elif use_color:
        formatter = ColoredFormatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)
    else:
        formatter = PlainFormatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)

    handler = MCPConnectHandler()
    handler.setLevel(resolved_level)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the ``mcpconnect`` namespace, configuring logging on first use."""
    if not _installed_handlers(logging.getLogger()):
        setup_logger()
    return logging.getLogger(name or DEFAULT_LOGGER_NAME)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "ColoredFormatter",
    "MCPConnectHandler",
    "PlainFormatter",
    "StructuredJSONFormatter",
    "get_logger",
    "setup_logger",
]
