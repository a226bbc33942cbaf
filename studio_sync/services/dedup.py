from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from typing import Any, TypeVar

from ..models.records import (
    EnrollmentRecord,
    FreeAttendanceRow,
    FreeClassRecord,
    PaidAttendanceRow,
)

"""Deduplication of candidate attendance rows against existing identity keys.

`filter_new` is pure: the caller fetches the existing keys once per run and
writes whatever comes back. Candidates are also deduplicated among
themselves, so two orders producing the same key insert one row.
"""

__all__ = [
    "filter_new",
    "free_attendance_candidates",
    "paid_attendance_candidates",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _identity(candidate: Any) -> Hashable:
    return candidate.identity_key()


def filter_new(
    candidates: Iterable[T],
    existing_keys: set[Hashable],
    key: Callable[[T], Hashable] = _identity,
) -> list[T]:
    """Return the candidates whose identity key is neither stored nor seen earlier in the batch.

    Order of the surviving candidates is preserved. Running the result back
    through with its keys added to `existing_keys` yields an empty list.
    """
    seen_keys: set[Hashable] = set()
    fresh: list[T] = []
    skipped = 0
    for candidate in candidates:
        k = key(candidate)
        if k in existing_keys or k in seen_keys:
            skipped += 1
            continue
        seen_keys.add(k)
        fresh.append(candidate)
    logger.debug("dedup kept=%d skipped=%d existing=%d", len(fresh), skipped, len(existing_keys))
    return fresh


def paid_attendance_candidates(records: Iterable[EnrollmentRecord]) -> list[PaidAttendanceRow]:
    """One attendance row per class of each enrollment record.

    Records without a customer are not attendable and produce nothing.
    """
    rows: list[PaidAttendanceRow] = []
    for record in records:
        if record.customer_id is None:
            continue
        for class_name in record.classes:
            rows.append(
                PaidAttendanceRow(
                    customer_id=record.customer_id,
                    class_name=class_name,
                    role=record.role.column_value,
                    term=f"Term {record.term}" if record.term else None,
                    block=record.block.column_value,
                    notes=record.notes,
                )
            )
    return rows


def free_attendance_candidates(records: Iterable[FreeClassRecord]) -> list[FreeAttendanceRow]:
    return [
        FreeAttendanceRow(
            customer_id=record.customer_id,
            class_date=record.class_date,
            role=record.role.column_value,
        )
        for record in records
        if record.customer_id is not None
    ]
