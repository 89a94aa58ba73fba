"""
execution-policy — unit tests for observability logging

Purpose
- Validate structured JSON logging, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and correlation field propagation.
- structlog events routed through the stdlib sink with their fields.
- Multi-threaded logging stability.
- Queue drain/shutdown behavior.

Functional requirements
- Offline operation.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from execution_policy.observability.logging import (
    LoggingConfig,
    configure_structlog,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"execution_policy.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_lines_carry_session_and_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-logging",
            base_log_dir=tmp_path,
            logger_name=logger_name,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(round=2, strategy="batch (size: 10, parallel: true)"):
        logger.info("round started", extra={"targets": 12})

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "session-logging" / "execution.jsonl"
    (event,) = _read_json_lines(handle.log_path)
    assert event["session_id"] == "session-logging"
    assert event["round"] == "2"
    assert event["strategy"] == "batch (size: 10, parallel: true)"
    assert event["message"] == "round started"
    assert event["level"] == "INFO"
    assert event["fields"] == {"targets": 12}
    assert str(event["timestamp"]).endswith("Z")


def test_structlog_events_reach_the_json_sink(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-structlog", base_log_dir=tmp_path, logger_name=logger_name)
    )
    configure_structlog()

    structlog.get_logger(logger_name).info(
        "fallback_granted",
        from_strategy="all-at-once (parallel: false)",
        fallback_count=1,
    )
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "fallback_granted"
    assert event["fields"] == {
        "from_strategy": "all-at-once (parallel: false)",
        "fallback_count": 1,
    }


def test_level_filtering_drops_debug(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-level",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            level="warning",
        )
    )
    logger = logging.getLogger(logger_name)

    logger.debug("hidden")
    logger.warning("shown")
    shutdown_logging(handle)

    assert [event["message"] for event in _read_json_lines(handle.log_path)] == ["shown"]


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        with correlation_scope(target=f"package example.com/m/p{thread_idx}"):
            for i in range(per_thread):
                logger.info("thread=%s index=%s", thread_idx, i)

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == total_threads * per_thread
    for event in events:
        thread_idx = str(event["message"]).split()[0].split("=")[1]
        assert event["target"] == f"package example.com/m/p{thread_idx}"


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert handle.is_shutdown
    assert get_active_logging_handle() is None


def test_rotating_file_handler_is_used_when_requested(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-rotating",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            rotating_file=True,
            max_bytes=1_000_000,
            backup_count=2,
        )
    )
    logging.getLogger(logger_name).info("rotating")
    shutdown_logging(handle)

    assert _read_json_lines(handle.log_path)[0]["message"] == "rotating"


def test_new_setup_replaces_active_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(
        LoggingConfig(session_id="session-a", base_log_dir=tmp_path, logger_name=_logger_name())
    )
    second = setup_structured_logging(
        LoggingConfig(session_id="session-b", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"session_id": " "}, "session_id"),
        ({"queue_size": 0}, "queue_size"),
        ({"log_filename": "nested/file.jsonl"}, "path separators"),
        ({"level": "chatty"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config(tmp_path: Path, overrides: dict[str, object], message: str) -> None:
    params: dict[str, object] = {
        "session_id": "session-invalid",
        "base_log_dir": tmp_path,
        "logger_name": _logger_name(),
    }
    params.update(overrides)

    with pytest.raises(ValueError, match=message):
        setup_structured_logging(LoggingConfig(**params))  # type: ignore[arg-type]


def test_correlation_fields_nest_and_reset() -> None:
    token = set_correlation_fields(session_id="session-x", round=1)
    try:
        with correlation_scope(round=2, target="file a_test.go"):
            assert get_correlation_context() == {
                "session_id": "session-x",
                "round": "2",
                "target": "file a_test.go",
            }
            with correlation_scope(target=None):
                assert "target" not in get_correlation_context()
        assert get_correlation_context() == {"session_id": "session-x", "round": "1"}
    finally:
        reset_correlation_fields(token)

    assert get_correlation_context() == {}


def test_unknown_correlation_key_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown correlation key 'worker'"):
        set_correlation_fields(worker="w-1")

    assert get_correlation_context() == {}


def test_structlog_exception_is_rendered(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-exc", base_log_dir=tmp_path, logger_name=logger_name)
    )
    configure_structlog()

    try:
        raise RuntimeError("spawn failed")
    except RuntimeError:
        structlog.get_logger(logger_name).error("target_execution_failed", exc_info=True)
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["level"] == "ERROR"
    fields = event["fields"]
    assert isinstance(fields, dict)
    assert "RuntimeError: spawn failed" in fields["exception"]
