from __future__ import annotations

from ..models.reconciliation_report import ReconciliationReport

"""SUMMARY line rendering for a reconciliation run.

Format:
SUMMARY orders={n} paid_records={n} free_records={n} inserted={n}
steps={ok}/{total} failed={step|-} elapsed_sec={elapsed}
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
    "render_table_lines",
]


def format_elapsed(seconds: float) -> str:
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        # avoid scientific notation
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return str(seconds)


def render_summary_line(report: ReconciliationReport) -> str:
    """Render the SUMMARY line for `report`.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t = datetime(2025, 6, 1, tzinfo=timezone.utc)
        >>> report = ReconciliationReport(start_time=t, end_time=t, elapsed_seconds=2.0,
        ...                               counts={"orders_fetched": 3})
        >>> render_summary_line(report)
        'SUMMARY orders=3 paid_records=0 free_records=0 inserted=0 steps=0/0 failed=- elapsed_sec=2'
    """
    counts = report.counts
    attempted = [s for s in report.steps if s.status.value != "skipped"]
    return (
        f"SUMMARY orders={counts.get('orders_fetched', 0)} "
        f"paid_records={counts.get('paid_records', 0)} "
        f"free_records={counts.get('free_records', 0)} "
        f"inserted={report.total_inserted_rows} "
        f"steps={len(report.succeeded_steps)}/{len(attempted)} "
        f"failed={report.failed_step or '-'} "
        f"elapsed_sec={format_elapsed(report.elapsed_seconds)}"
    )


def render_table_lines(report: ReconciliationReport) -> list[str]:
    """One `table=... attempted=... written=...` line per written table."""
    return [
        f"table={table} attempted={attempted} written={written}"
        for table, (attempted, written) in report.table_stats.items()
    ]
