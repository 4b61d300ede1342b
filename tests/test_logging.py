"""Tests for JSONL logging."""

import json
import tempfile
from pathlib import Path

import pytest

from continuum.logging import JSONLLogger, LogEntry, configure_logger, get_logger


@pytest.fixture
def temp_log_dir():
    """Create a temporary directory for logs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def logger(temp_log_dir: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=temp_log_dir)


def read_entries(logger: JSONLLogger) -> list[dict]:
    with open(logger.log_path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """Test LogEntry excludes None values."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert "timestamp" in data
    assert "event" in data
    assert "user_id" not in data  # None excluded
    assert "extra" not in data  # Empty dict excluded


def test_log_creates_file(logger: JSONLLogger):
    """Test that logging creates the log file."""
    logger.log("test_event")

    assert logger.log_path.exists()
    assert logger.log_path.name == "memory.jsonl"


def test_log_writes_jsonl(logger: JSONLLogger):
    """Test that logs are written in JSONL format."""
    logger.log("event1", user_id="u1")
    logger.log("event2", user_id="u2")

    entries = read_entries(logger)

    assert len(entries) == 2
    assert entries[0]["event"] == "event1"
    assert entries[0]["user_id"] == "u1"
    assert entries[1]["event"] == "event2"


def test_log_context_served(logger: JSONLLogger):
    """Test logging a context block handed to a prompt."""
    logger.log_context_served(
        "u1", level="standard", cached=False, truncated=True, length=612, duration_ms=3.5
    )

    entry = read_entries(logger)[0]

    assert entry["event"] == "context_served"
    assert entry["user_id"] == "u1"
    assert entry["duration_ms"] == 3.5
    assert entry["extra"] == {
        "level": "standard", "cached": False, "truncated": True, "length": 612,
    }


def test_log_facts_extracted(logger: JSONLLogger):
    """Test logging an extraction run."""
    logger.log_facts_extracted("u1", 3, conversation_id="conv-1", duration_ms=820.0)

    entry = read_entries(logger)[0]

    assert entry["event"] == "facts_extracted"
    assert entry["conversation_id"] == "conv-1"
    assert entry["extra"]["count"] == 3


def test_non_ascii_kept(logger: JSONLLogger):
    logger.log("custom", note="información")
    assert "información" in logger.log_path.read_text(encoding="utf-8")


def test_rotation(temp_log_dir: Path):
    """Test log rotation when max size is exceeded."""
    logger = JSONLLogger(log_dir=temp_log_dir, max_size_mb=0.001)  # ~1KB

    # Write enough to trigger rotation
    for i in range(100):
        logger.log(f"event_{i}", data="x" * 100)

    log_files = list(temp_log_dir.glob("memory*.jsonl"))
    assert len(log_files) >= 2


def test_configure_logger(temp_log_dir: Path):
    """Test that the global logger can be pointed at a directory."""
    configured = configure_logger(log_dir=temp_log_dir)

    assert get_logger() is configured
    assert configured.log_dir == temp_log_dir
