from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

"""Reconciliation result models.

A run is a fixed sequence of named steps. Each step produces one StepResult;
the ReconciliationReport aggregates them together with projection counts and
the status lines shown to the operator.
"""

__all__ = [
    "ReconciliationReport",
    "StepResult",
    "StepStatus",
]


class StepStatus(Enum):
    """Outcome of a pipeline step.

    - SUCCESS: step ran to completion
    - FAILED: step raised a recoverable error; later independent steps still run
    - SKIPPED: step never ran (earlier step aborted the run, or its collaborator
      is not configured)
    """
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    step: str
    status: StepStatus
    table: str | None = None
    attempted: int = 0  # rows handed to the store
    written: int = 0  # rows the store reported as written
    message: str = ""
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


@dataclass(frozen=True)
class ReconciliationReport:
    """Aggregated result of one reconciliation run."""
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    steps: list[StepResult] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    status_messages: list[str] = field(default_factory=list)

    @property
    def succeeded_steps(self) -> list[str]:
        return [s.step for s in self.steps if s.status is StepStatus.SUCCESS]

    @property
    def failed_steps(self) -> list[str]:
        return [s.step for s in self.steps if s.status is StepStatus.FAILED]

    @property
    def failed_step(self) -> str | None:
        """First failed step, or None when every attempted step succeeded."""
        failed = self.failed_steps
        return failed[0] if failed else None

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    @property
    def message(self) -> str:
        return " ".join(self.status_messages)

    def step(self, name: str) -> StepResult | None:
        for s in self.steps:
            if s.step == name:
                return s
        return None

    @property
    def total_inserted_rows(self) -> int:
        return sum(s.written for s in self.steps if s.step.endswith("_attendance"))

    @property
    def table_stats(self) -> dict[str, tuple[int, int]]:
        """(attempted, written) per table touched by a write step."""
        return {s.table: (s.attempted, s.written) for s in self.steps if s.table}
