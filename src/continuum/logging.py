"""Structured event log for the memory system.

Each memory operation worth auditing (context handed to a prompt, facts
extracted, facts pruned) is appended as one JSON object per line.
"""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".continuum" / "logs"
DEFAULT_LOG_FILE = "memory.jsonl"


@dataclass
class LogEntry:
    """One line of the event log."""

    timestamp: str
    event: str
    user_id: str | None = None
    conversation_id: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, leaving out unset fields."""
        return {k: v for k, v in asdict(self).items() if v not in (None, {})}


class JSONLLogger:
    """Appends memory events to a size-rotated JSONL file.

    When the file reaches max_size_mb it is renamed with a UTC timestamp
    and a sequence number, and a fresh file is started.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = DEFAULT_LOG_FILE,
        max_size_mb: float = 10.0,
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._rotations = 0
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        conversation_id: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Append an event. Keyword arguments beyond the known fields go to extra."""
        if duration_ms is not None:
            duration_ms = round(duration_ms, 3)

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            conversation_id=conversation_id,
            duration_ms=duration_ms,
            error=error,
            extra=extra,
        )
        line = json.dumps(entry.to_dict(), ensure_ascii=False)

        with self._lock:
            self._maybe_rotate()
            with self.log_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def log_context_served(
        self,
        user_id: str,
        *,
        level: str | None,
        cached: bool,
        truncated: bool = False,
        length: int = 0,
        duration_ms: float | None = None,
    ) -> None:
        """Record a context block handed out for prompt injection."""
        self.log(
            "context_served",
            user_id=user_id,
            duration_ms=duration_ms,
            level=level,
            cached=cached,
            truncated=truncated,
            length=length,
        )

    def log_facts_extracted(
        self,
        user_id: str,
        count: int,
        *,
        conversation_id: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Record the outcome of an extraction run."""
        self.log(
            "facts_extracted",
            user_id=user_id,
            conversation_id=conversation_id,
            duration_ms=duration_ms,
            count=count,
        )

    def log_context_pruned(self, user_id: str, deleted: int, *, keep: int) -> None:
        """Record facts removed to stay under a plan ceiling."""
        self.log("context_pruned", user_id=user_id, deleted=deleted, keep=keep)

    def _maybe_rotate(self) -> None:
        # Caller holds the lock
        path = self.log_path
        if not path.exists() or path.stat().st_size < self.max_size_bytes:
            return

        self._rotations += 1
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        path.rename(self.log_dir / f"{path.stem}_{stamp}_{self._rotations}{path.suffix}")


_event_log: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Return the process-wide event log, creating it on first use."""
    global _event_log
    if _event_log is None:
        _event_log = JSONLLogger()
    return _event_log


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Replace the process-wide event log and return it."""
    global _event_log
    _event_log = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _event_log
