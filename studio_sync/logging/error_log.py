from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord

"""Audit log buffering.

Classification misses, unparseable dates and step failures are collected as
ErrorRecords during a run and written once at the end to
`logs/errors-YYYYMMDD-HHMMSS.log` (UTC) as JSON Lines.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer of ErrorRecords; flush() appends them as JSON Lines.

    The file path is fixed on first access. Single-threaded use only.
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def counts(self) -> dict[str, int]:
        """Pending records per error_type."""
        out: dict[str, int] = {}
        for r in self._records:
            out[r.error_type] = out.get(r.error_type, 0) + 1
        return out

    def flush(self) -> Path | None:
        """Write pending records; returns the file path, or None when nothing was pending."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
