from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the sync audit log.

Each record is one JSON Lines entry with a fixed key set. `reference` points
at whatever the step was working on: an order id, a table name, or "-" for
run-level errors.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured audit record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        step: Pipeline step that produced the record (project, paid_attendance, ...)
        reference: Order id, table name, or "-" when not applicable
        error_type: Classification in UPPER_SNAKE_CASE (CLASSIFICATION_MISS, WRITE_FAILURE, ...)
        message: Human readable detail
    """
    timestamp: str  # ISO8601 UTC
    step: str
    reference: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(step: str, reference: object, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            step=step,
            reference=str(reference),
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
