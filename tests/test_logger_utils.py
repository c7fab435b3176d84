# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

from __future__ import annotations

from collections.abc import Iterator
import io
import json
import logging
from typing import Any

import pytest

from mcpconnect.utils.logger import (
    ColoredFormatter,
    MCPConnectHandler,
    PlainFormatter,
    StructuredJSONFormatter,
    get_logger,
    setup_logger,
)


@pytest.fixture
def restore_root() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _capture_logging(level: int, **kwargs: Any) -> list[str]:
    stream = io.StringIO()

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(
        StructuredJSONFormatter(
            kwargs.pop("json_serializer", json.dumps),
            payload_transformer=kwargs.pop("payload_transformer", None),
        )
    )

    logger = logging.getLogger("mcpconnect.test.logger")
    logger.handlers = []
    logger.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False

    logger.info("request finished", extra={"context": {"value": 42}, "duration_ms": 1.5})
    handler.flush()
    logger.handlers = []
    logger.propagate = True

    return stream.getvalue().strip().splitlines()


def _managed(root: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in root.handlers if isinstance(handler, MCPConnectHandler)]


def test_setup_logger_plain(monkeypatch: pytest.MonkeyPatch, restore_root: logging.Logger) -> None:
    monkeypatch.setenv("MCPCONNECT_LOG_JSON", "0")
    setup_logger(force=True, level="debug")

    (handler,) = _managed(restore_root)
    assert isinstance(handler.formatter, PlainFormatter)
    assert restore_root.level == logging.DEBUG


def test_setup_logger_json_from_env(monkeypatch: pytest.MonkeyPatch, restore_root: logging.Logger) -> None:
    monkeypatch.setenv("MCPCONNECT_LOG_JSON", "1")
    setup_logger(force=True)

    (handler,) = _managed(restore_root)
    assert isinstance(handler.formatter, StructuredJSONFormatter)


def test_setup_logger_is_idempotent_without_force(restore_root: logging.Logger) -> None:
    setup_logger(force=True, use_json=False, use_color=False)
    setup_logger(use_json=True)

    (handler,) = _managed(restore_root)
    assert not isinstance(handler.formatter, StructuredJSONFormatter)


def test_get_logger_defaults_to_package_namespace() -> None:
    assert get_logger().name == "mcpconnect"
    assert get_logger("mcpconnect.client").name == "mcpconnect.client"


def test_json_payload_merges_context_and_extras() -> None:
    lines = _capture_logging(logging.INFO)

    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["logger"] == "mcpconnect.test.logger"
    assert payload["level"] == "info"
    assert payload["message"] == "request finished"
    assert payload["context"] == {"value": 42, "duration_ms": 1.5}


def test_payload_transformer_applied() -> None:
    lines = _capture_logging(
        logging.INFO,
        payload_transformer=lambda payload: {**payload, "context": {"transformed": payload.get("context", {})}},
    )

    payload = json.loads(lines[0])
    assert payload["context"] == {"transformed": {"value": 42, "duration_ms": 1.5}}


def test_plain_formatter_appends_duration_suffix() -> None:
    formatter = PlainFormatter("%(message)s")
    record = logging.LogRecord("demo", logging.INFO, __file__, 0, "done", args=(), exc_info=None)
    record.duration_ms = 12.3456

    assert formatter.format(record) == "done [12.35 ms]"


def test_plain_formatter_without_duration() -> None:
    record = logging.LogRecord("demo", logging.INFO, __file__, 0, "done", args=(), exc_info=None)
    assert PlainFormatter("%(message)s").format(record) == "done"


def test_colored_formatter_appends_duration_suffix() -> None:
    formatter = ColoredFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("demo", logging.INFO, __file__, 0, "done", args=(), exc_info=None)
    record.duration_ms = 7.0

    rendered = formatter.format(record)

    assert "[7.00 ms]" in rendered
    assert record.levelname == "INFO"
