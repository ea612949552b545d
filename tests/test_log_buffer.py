"""
tests/test_log_buffer.py — Admin Log Tail Tests
================================================
"""

from __future__ import annotations

import logging

import pytest

from deskpoints.services.log_buffer import (
    BufferHandler,
    LogBuffer,
    LogEntry,
    set_capture_level,
)


def _entry(level, logger="deskpoints.services.scoring_service", message="m"):
    return LogEntry("2026-03-11T10:00:00+00:00", level, logger, message)


class TestLogBuffer:
    def test_capacity_bounded(self):
        buf = LogBuffer(capacity=3)
        for i in range(5):
            buf.append(_entry("INFO", message=str(i)))
        assert len(buf) == 3
        assert [e["message"] for e in buf.tail()] == ["2", "3", "4"]

    def test_min_level(self):
        buf = LogBuffer()
        buf.append(_entry("DEBUG"))
        buf.append(_entry("WARNING"))
        buf.append(_entry("ERROR"))
        assert [e["level"] for e in buf.tail(min_level="warning")] == ["WARNING", "ERROR"]

    def test_logger_prefix(self):
        buf = LogBuffer()
        buf.append(_entry("INFO", logger="uvicorn.access"))
        buf.append(_entry("INFO", logger="deskpoints.api.main"))
        assert [e["logger"] for e in buf.tail(logger_prefix="deskpoints")] == [
            "deskpoints.api.main"
        ]

    def test_tail_count(self):
        buf = LogBuffer()
        for i in range(10):
            buf.append(_entry("INFO", message=str(i)))
        assert [e["message"] for e in buf.tail(count=2)] == ["8", "9"]

    def test_clear(self):
        buf = LogBuffer()
        buf.append(_entry("INFO"))
        buf.clear()
        assert len(buf) == 0


def test_handler_copies_records():
    buf = LogBuffer()
    handler = BufferHandler(buf)
    log = logging.getLogger("deskpoints.test.handler")
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    try:
        log.info("ticket %d closed", 7)
    finally:
        log.removeHandler(handler)
    [entry] = buf.tail()
    assert entry["message"] == "ticket 7 closed"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "deskpoints.test.handler"


def test_invalid_capture_level():
    with pytest.raises(ValueError):
        set_capture_level("LOUD")
