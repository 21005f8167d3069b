from __future__ import annotations

import json
import logging
import sys

from proctorsync.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging


def _record(level: int = logging.INFO, msg: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="proctorsync.test",
        level=level,
        pathname="svc.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_third_party_loggers_at_debug() -> None:
    setup_logging("debug")
    assert logging.getLogger("uvicorn").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_container_formatter_adds_location_only_for_warnings() -> None:
    fmt = _ContainerFormatter()
    assert "[svc.py:42]" not in fmt.format(_record(logging.INFO))
    assert "[svc.py:42]" in fmt.format(_record(logging.WARNING, "bad thing"))


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record(msg="server started"))
    assert "INFO" in output
    assert "server started" in output
    assert not output.startswith("{")


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(msg="sync tick")))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "proctorsync.test"
    assert parsed["message"] == "sync tick"
    assert "timestamp" in parsed


def test_json_formatter_includes_request_fields() -> None:
    record = _record(request_id="abc-123", method="GET", path="/health", duration_ms=12.5)
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["method"] == "GET"
    assert parsed["duration_ms"] == 12.5


def test_json_formatter_includes_engine_fields() -> None:
    record = _record(
        user_id="u1",
        course_id="web-development",
        video_id="video-1",
        alert_type="face_missing",
    )
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["user_id"] == "u1"
    assert parsed["course_id"] == "web-development"
    assert parsed["video_id"] == "video-1"
    assert parsed["alert_type"] == "face_missing"


def test_json_formatter_skips_placeholder_request_id() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(request_id="-")))
    assert "request_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    formatter = _JsonFormatter()
    try:
        raise ValueError("test error")
    except ValueError:
        record = _record(logging.ERROR, "Something failed")
        record.exc_info = sys.exc_info()
        output = formatter.format(record)

    parsed = json.loads(output)
    assert "ValueError: test error" in parsed["exception"]
