"""Data store protocol and implementations."""
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from vault_allocator.models import RunRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class DataStore(Protocol):
    """Protocol for audit persistence backends."""

    def log_run(self, record: RunRecord) -> None:
        """Append a run record to the audit trail."""
        ...

    def read_runs(self, day: date | None = None) -> list[dict[str, Any]]:
        """Read the run records of a day (today if None)."""
        ...


class FileDataStore:
    """File-based implementation of DataStore using JSONL files."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create directory structure if it doesn't exist."""
        (self.base_path / "audit" / "runs").mkdir(parents=True, exist_ok=True)

    def _runs_file(self, day: date) -> Path:
        return self.base_path / "audit" / "runs" / f"{day.strftime('%Y-%m-%d')}.jsonl"

    def log_run(self, record: RunRecord) -> None:
        """Log a run record to the JSONL file of its day."""
        file_path = self._runs_file(record.timestamp.date())

        with open(file_path, "a") as f:
            f.write(json.dumps(record.to_dict()) + "\n")

        logger.debug(f"Logged run to {file_path}")

    def read_runs(self, day: date | None = None) -> list[dict[str, Any]]:
        """Read all run records logged on a day."""
        day = day or datetime.now(timezone.utc).date()
        file_path = self._runs_file(day)
        if not file_path.exists():
            return []

        with open(file_path) as f:
            return [json.loads(line) for line in f if line.strip()]
