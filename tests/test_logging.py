"""Tests for JSONL event logging."""

import json
import tempfile
from pathlib import Path

import pytest

from synaptide.logging import JSONLLogger, LogEntry, configure_logger, get_logger


@pytest.fixture
def temp_log_dir():
    """Create a temporary directory for logs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def logger(temp_log_dir: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=temp_log_dir)


def read_entries(logger: JSONLLogger) -> list[dict]:
    with open(logger.log_path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """LogEntry excludes None values and empty extras."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert "timestamp" in data
    assert "event" in data
    assert "user_id" not in data
    assert "extra" not in data


def test_log_creates_file(logger: JSONLLogger):
    logger.log("test_event")

    assert logger.log_path.exists()


def test_log_writes_jsonl(logger: JSONLLogger):
    logger.log("event1", user_id="u1")
    logger.log("event2", user_id="u2")

    entries = read_entries(logger)

    assert len(entries) == 2
    assert entries[0]["event"] == "event1"
    assert entries[0]["user_id"] == "u1"
    assert entries[1]["event"] == "event2"


def test_log_backend_selected(logger: JSONLLogger):
    logger.log_backend_selected("mongo")

    (entry,) = read_entries(logger)
    assert entry["event"] == "storage_backend"
    assert entry["backend"] == "mongo"
    assert "error" not in entry


def test_log_backend_fallback(logger: JSONLLogger):
    logger.log_backend_selected("memory", fallback_reason="connection refused")

    (entry,) = read_entries(logger)
    assert entry["backend"] == "memory"
    assert entry["error"] == "connection refused"
    assert entry["extra"]["fallback"] is True


def test_log_exchange(logger: JSONLLogger):
    logger.log_exchange("u1", duration_ms=150.5, history_length=4)

    (entry,) = read_entries(logger)
    assert entry["event"] == "exchange"
    assert entry["user_id"] == "u1"
    assert entry["duration_ms"] == 150.5
    assert entry["count"] == 4


def test_log_profile_merge(logger: JSONLLogger):
    logger.log_profile_merge("u1", version=3, interests=2)

    (entry,) = read_entries(logger)
    assert entry["event"] == "profile_merge"
    assert entry["extra"]["version"] == 3
    assert entry["count"] == 2


def test_log_analysis_failed(logger: JSONLLogger):
    logger.log_analysis_failed("u1", "timeout")

    (entry,) = read_entries(logger)
    assert entry["event"] == "analysis_failed"
    assert entry["error"] == "timeout"


def test_log_history_cleared_zero(logger: JSONLLogger):
    logger.log_history_cleared("u1", 0)

    (entry,) = read_entries(logger)
    assert entry["count"] == 0


def test_rotation(temp_log_dir: Path):
    """Log file rotates when max size is exceeded."""
    logger = JSONLLogger(log_dir=temp_log_dir, max_size_mb=0.001)  # ~1KB

    for i in range(100):
        logger.log(f"event_{i}", data="x" * 100)

    log_files = list(temp_log_dir.glob("events*.jsonl"))
    assert len(log_files) >= 2


def test_extra_fields(logger: JSONLLogger):
    logger.log("custom", custom_field="value", another=123)

    (entry,) = read_entries(logger)
    assert entry["extra"]["custom_field"] == "value"
    assert entry["extra"]["another"] == 123


def test_configure_logger_replaces_global(temp_log_dir: Path):
    configured = configure_logger(temp_log_dir)
    assert get_logger() is configured
    assert configured.log_dir == temp_log_dir
