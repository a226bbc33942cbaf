from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from ..db.attendance_store import AttendanceStore, StoreError, StoreWriteError
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import TableNames
from ..models.orders import Customer, RawOrder
from ..models.reconciliation_report import ReconciliationReport, StepResult, StepStatus
from ..sources.base import CustomerDirectory, OrderSource, SourceFetchError
from ..sources.customers import customer_map
from .dedup import filter_new, free_attendance_candidates, paid_attendance_candidates
from .progress import StepProgress
from .projector import DEFAULT_RECENCY_DAYS, OrderProjector, Projection, ProjectionIssue, TermScope
from .social import project_social

"""Reconciliation engine: one sync run from order source to attendance store.

Steps run in a fixed order:

    fetch -> project -> replace_paid_orders -> replace_free_orders
          -> paid_attendance -> free_attendance -> customers -> social_attendance

fetch/project failures abort the run. Every later step is independent: a
failed write is recorded (table, rows attempted, rows written) and the next
step still runs. Nothing is rolled back across steps. The whole run holds the
store's sync lock; a run that cannot take it writes nothing.
"""

__all__ = [
    "ReconciliationEngine",
    "STEP_NAMES",
]

logger = logging.getLogger(__name__)

STEP_NAMES = (
    "fetch",
    "project",
    "replace_paid_orders",
    "replace_free_orders",
    "paid_attendance",
    "free_attendance",
    "customers",
    "social_attendance",
)


@dataclass
class _Run:
    """Mutable state of a run in progress; frozen into a ReconciliationReport at the end."""
    start_time: datetime
    started: float
    steps: list[StepResult] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    status_messages: list[str] = field(default_factory=list)
    orders: list[RawOrder] = field(default_factory=list)
    projection: Projection | None = None
    customers: dict[int, Customer] = field(default_factory=dict)

    def record(self, result: StepResult) -> None:
        self.steps.append(result)

    def say(self, message: str) -> None:
        self.status_messages.append(message)
        logger.info(message)

    def skip_remaining(self, names: Sequence[str]) -> None:
        done = {s.step for s in self.steps}
        for name in names:
            if name not in done:
                self.steps.append(StepResult(step=name, status=StepStatus.SKIPPED))


class ReconciliationEngine:
    """Runs sync passes against injected collaborators.

    Args:
        order_source: anything with fetch_orders(since)
        store: AttendanceStore implementation; may be None for an engine that only
            does dry runs
        as_of: reference date for free-class recency and implicit years
        scope: term scope for paid enrollment
        tables: table names; defaults match the production schema
        customer_directory: optional; without it social records carry the name on the order
        error_log: audit buffer, flushed once at the end of each run
        recency_days: free-class recency window
    """

    def __init__(
        self,
        order_source: OrderSource,
        store: AttendanceStore | None,
        *,
        as_of: date,
        scope: TermScope | None = None,
        tables: TableNames | None = None,
        customer_directory: CustomerDirectory | None = None,
        error_log: ErrorLogBuffer | None = None,
        recency_days: int = DEFAULT_RECENCY_DAYS,
    ) -> None:
        self.order_source = order_source
        self.store = store
        self.as_of = as_of
        self.scope = scope or TermScope()
        self.tables = tables or TableNames()
        self.customer_directory = customer_directory
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.projector = OrderProjector(as_of=as_of, scope=self.scope, recency_days=recency_days)
        # orders and customers seen by the most recent run, for reporting
        self.orders: list[RawOrder] = []
        self.customers: dict[int, Customer] = {}

    # ------------------------------------------------------------------ run

    def reconcile(self, window_start: datetime, *, dry_run: bool = False) -> ReconciliationReport:
        """Run one sync over orders created at or after `window_start`.

        With dry_run only fetch and project run; the store is not touched and
        no lock is taken.
        """
        if self.store is None and not dry_run:
            raise ValueError("an attendance store is required unless dry_run is set")
        run = _Run(start_time=datetime.now(UTC), started=time.perf_counter())
        logger.info(
            "sync window_start=%s as_of=%s term=%s block=%s",
            window_start.isoformat(),
            self.as_of.isoformat(),
            self.scope.term or "any",
            self.scope.block.column_value or "any",
        )
        with StepProgress(len(STEP_NAMES), description="Sync") as progress:
            if dry_run:
                self._read_steps(run, window_start, progress)
                run.skip_remaining(STEP_NAMES)
            else:
                self._locked_run(run, window_start, progress)
        return self._finish(run)

    def _locked_run(self, run: _Run, window_start: datetime, progress: StepProgress) -> None:
        with ExitStack() as stack:
            try:
                stack.enter_context(self.store.sync_lock())
            except StoreError as e:
                run.record(StepResult(step="lock", status=StepStatus.FAILED, message=str(e)))
                run.say(f"Sync not started: {e}")
                self._audit("lock", "-", "LOCK_UNAVAILABLE", str(e))
                run.skip_remaining(STEP_NAMES)
                return
            if not self._read_steps(run, window_start, progress):
                run.skip_remaining(STEP_NAMES)
                return
            self._write_steps(run, progress)

    def _read_steps(self, run: _Run, window_start: datetime, progress: StepProgress) -> bool:
        """fetch + project; returns False when the run must stop."""
        progress.start_step("fetch")
        t0 = time.perf_counter()
        run.say("Fetching orders...")
        try:
            run.orders = self.order_source.fetch_orders(window_start)
        except SourceFetchError as e:
            run.record(
                StepResult(step="fetch", status=StepStatus.FAILED, message=str(e), elapsed_seconds=_since(t0))
            )
            run.say(f"Error: {e}")
            self._audit("fetch", "-", "SOURCE_FETCH_FAILED", str(e))
            progress.finish_step(success=False)
            return False
        run.counts["orders_fetched"] = len(run.orders)
        run.record(StepResult(step="fetch", status=StepStatus.SUCCESS, elapsed_seconds=_since(t0)))
        run.say(f"Fetched {len(run.orders)} orders.")
        progress.finish_step(orders=len(run.orders))

        progress.start_step("project")
        t0 = time.perf_counter()
        try:
            projection = self.projector.project(run.orders)
        except ValueError as e:
            run.record(
                StepResult(step="project", status=StepStatus.FAILED, message=str(e), elapsed_seconds=_since(t0))
            )
            run.say(f"Error: {e}")
            self._audit("project", "-", "PROJECTION_FAILED", str(e))
            progress.finish_step(success=False)
            return False
        run.projection = projection
        run.counts.update(projection.stats.as_dict())
        run.counts["paid_records"] = len(projection.paid)
        run.counts["free_records"] = len(projection.free)
        self._audit_issues("project", projection.issues)
        run.record(StepResult(step="project", status=StepStatus.SUCCESS, elapsed_seconds=_since(t0)))
        run.say(f"Projected {len(projection.paid)} paid and {len(projection.free)} free records.")
        progress.finish_step(paid=len(projection.paid), free=len(projection.free))
        return True

    def _write_steps(self, run: _Run, progress: StepProgress) -> None:
        projection = run.projection
        assert projection is not None
        steps: list[tuple[str, Callable[[], StepResult]]] = [
            (
                "replace_paid_orders",
                lambda: self._replace("replace_paid_orders", self.tables.paid_orders, [r.to_row() for r in projection.paid]),
            ),
            (
                "replace_free_orders",
                lambda: self._replace("replace_free_orders", self.tables.free_orders, [r.to_row() for r in projection.free]),
            ),
            (
                "paid_attendance",
                lambda: self._append_new(
                    "paid_attendance", self.tables.paid_attendance, paid_attendance_candidates(projection.paid)
                ),
            ),
            (
                "free_attendance",
                lambda: self._append_new(
                    "free_attendance", self.tables.free_attendance, free_attendance_candidates(projection.free)
                ),
            ),
            ("customers", lambda: self._load_customers(run)),
            ("social_attendance", lambda: self._social(run)),
        ]
        for name, action in steps:
            progress.start_step(name)
            result = action()
            run.record(result)
            run.say(_status_line(result))
            progress.finish_step(success=result.ok, written=result.written)

    # ---------------------------------------------------------------- steps

    def _replace(self, step: str, table: str, rows: list[dict[str, Any]]) -> StepResult:
        t0 = time.perf_counter()
        try:
            written = self.store.replace_all(table, rows)
        except StoreError as e:
            return self._write_failure(step, table, len(rows), e, t0)
        return StepResult(
            step=step,
            status=StepStatus.SUCCESS,
            table=table,
            attempted=len(rows),
            written=written,
            elapsed_seconds=_since(t0),
        )

    def _append_new(self, step: str, table: str, candidates: Sequence[Any]) -> StepResult:
        """Read identity keys once, keep unseen candidates, insert them."""
        t0 = time.perf_counter()
        try:
            existing = self.store.read_keys(table)
        except StoreError as e:
            return self._write_failure(step, table, 0, e, t0)
        fresh = filter_new(candidates, existing)
        logger.debug("step=%s candidates=%d new=%d", step, len(candidates), len(fresh))
        if not fresh:
            return StepResult(step=step, status=StepStatus.SUCCESS, table=table, elapsed_seconds=_since(t0))
        try:
            written = self.store.insert_rows(table, [c.to_row() for c in fresh])
        except StoreError as e:
            return self._write_failure(step, table, len(fresh), e, t0)
        return StepResult(
            step=step,
            status=StepStatus.SUCCESS,
            table=table,
            attempted=len(fresh),
            written=written,
            elapsed_seconds=_since(t0),
        )

    def _load_customers(self, run: _Run) -> StepResult:
        t0 = time.perf_counter()
        if self.customer_directory is None:
            return StepResult(step="customers", status=StepStatus.SKIPPED, message="no customer directory")
        try:
            customers = self.customer_directory.fetch_customers()
        except SourceFetchError as e:
            self._audit("customers", self.tables.customers, "SOURCE_FETCH_FAILED", str(e))
            logger.warning("customer directory failed; social records use order names: %s", e)
            return StepResult(
                step="customers",
                status=StepStatus.FAILED,
                message=str(e),
                elapsed_seconds=_since(t0),
            )
        run.customers = customer_map(customers)
        run.counts["customers"] = len(run.customers)
        return StepResult(step="customers", status=StepStatus.SUCCESS, elapsed_seconds=_since(t0))

    def _social(self, run: _Run) -> StepResult:
        records, issues = project_social(run.orders, as_of=self.as_of, customers=run.customers)
        run.counts["social_records"] = len(records)
        self._audit_issues("social_attendance", issues)
        return self._append_new("social_attendance", self.tables.social_attendance, records)

    # --------------------------------------------------------------- helpers

    def _write_failure(self, step: str, table: str, attempted: int, error: StoreError, t0: float) -> StepResult:
        written = error.written if isinstance(error, StoreWriteError) else 0
        logger.error("step=%s table=%s failed: %s", step, table, error)
        error_type = "WRITE_FAILURE" if isinstance(error, StoreWriteError) else "STORE_FAILURE"
        self._audit(step, table, error_type, str(error))
        return StepResult(
            step=step,
            status=StepStatus.FAILED,
            table=table,
            attempted=attempted,
            written=written,
            message=str(error),
            elapsed_seconds=_since(t0),
        )

    def _audit(self, step: str, reference: object, error_type: str, message: str) -> None:
        self.error_log.append(ErrorRecord.create(step, reference, error_type, message))

    def _audit_issues(self, step: str, issues: Sequence[ProjectionIssue]) -> None:
        for issue in issues:
            self._audit(step, issue.order_id, issue.error_type, issue.message)

    def _finish(self, run: _Run) -> ReconciliationReport:
        self.orders = run.orders
        self.customers = run.customers
        for error_type, n in self.error_log.counts().items():
            run.counts[f"audit_{error_type.lower()}"] = n
        try:
            path = self.error_log.flush()
        except OSError as e:
            logger.warning("audit log could not be written: %s", e)
        else:
            if path is not None:
                logger.info("audit records written to %s", path)
        end_time = datetime.now(UTC)
        return ReconciliationReport(
            start_time=run.start_time,
            end_time=end_time,
            elapsed_seconds=_since(run.started),
            steps=run.steps,
            counts=run.counts,
            status_messages=run.status_messages,
        )


_STEP_LABELS = {
    "replace_paid_orders": "paid orders",
    "replace_free_orders": "free orders",
    "paid_attendance": "paid attendance",
    "free_attendance": "free attendance",
    "customers": "customers",
    "social_attendance": "social attendance",
}


def _status_line(result: StepResult) -> str:
    label = _STEP_LABELS.get(result.step, result.step)
    if result.status is StepStatus.FAILED:
        return f"Failed to update {label}: {result.message}"
    if result.status is StepStatus.SKIPPED:
        return f"Skipped {label} ({result.message})."
    if result.step == "customers":
        return "Loaded customers."
    if result.step.startswith("replace_"):
        return f"Synced {result.written} {label}."
    if result.written == 0:
        return f"{label.capitalize()} records are up to date."
    return f"Updated {result.written} {label} records."


def _since(t0: float) -> float:
    return round(time.perf_counter() - t0, 3)
