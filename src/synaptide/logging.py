"""JSONL event log for observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    backend: str | None = None
    duration_ms: float | None = None
    count: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".synaptide" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        backend: str | None = None,
        duration_ms: float | None = None,
        count: int | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            backend=backend,
            duration_ms=duration_ms,
            count=count,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_backend_selected(self, backend: str, *, fallback_reason: str | None = None) -> None:
        """Log which storage backend the process settled on."""
        if fallback_reason:
            self.log("storage_backend", backend=backend, error=fallback_reason, fallback=True)
        else:
            self.log("storage_backend", backend=backend)

    def log_exchange(
        self,
        user_id: str,
        duration_ms: float,
        history_length: int,
    ) -> None:
        """Log a completed user/assistant exchange."""
        self.log(
            "exchange",
            user_id=user_id,
            duration_ms=duration_ms,
            count=history_length,
        )

    def log_profile_merge(self, user_id: str, version: int, interests: int) -> None:
        """Log a merged preference profile."""
        self.log("profile_merge", user_id=user_id, version=version, count=interests)

    def log_analysis_failed(self, user_id: str, error: str) -> None:
        """Log a preference analysis that could not be merged."""
        self.log("analysis_failed", user_id=user_id, error=error)

    def log_history_cleared(self, user_id: str, deleted: int) -> None:
        """Log a cleared message log."""
        self.log("history_cleared", user_id=user_id, count=deleted)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
