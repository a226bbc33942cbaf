from __future__ import annotations

from datetime import date, datetime, timezone

from studio_sync.models.classification import Block, Role
from studio_sync.models.records import (
    PAID_ATTENDANCE_KEY,
    EnrollmentRecord,
    FreeClassRecord,
    PaidAttendanceRow,
    make_key,
)
from studio_sync.services.dedup import (
    filter_new,
    free_attendance_candidates,
    paid_attendance_candidates,
)


def _enrollment(customer_id=1, classes=("Level 1",), role=Role.LEADER, block=Block.B) -> EnrollmentRecord:
    return EnrollmentRecord(
        order_id=10,
        customer_id=customer_id,
        order_date=datetime(2025, 5, 20, tzinfo=timezone.utc),
        classes=classes,
        role=role,
        paid=True,
        notes="",
        term="2",
        block=block,
    )


def test_paid_candidates_one_row_per_class():
    rows = paid_attendance_candidates([_enrollment(classes=("Level 1", "Level 2"))])
    assert [(r.class_name, r.role, r.term, r.block) for r in rows] == [
        ("Level 1", "Leader", "Term 2", "B"),
        ("Level 2", "Leader", "Term 2", "B"),
    ]


def test_paid_candidate_row_shape():
    row = paid_attendance_candidates([_enrollment(role=Role.NO_ROLE, classes=("Shines",))])[0].to_row()
    assert row["role"] == ""
    assert [row[f"week_{n}"] for n in range(1, 6)] == [False] * 5


def test_records_without_customer_produce_no_rows():
    assert paid_attendance_candidates([_enrollment(customer_id=None)]) == []
    free = FreeClassRecord(order_id=1, customer_id=None, class_date=date(2025, 6, 3), role=Role.LEADER)
    assert free_attendance_candidates([free]) == []


def test_filter_new_skips_stored_keys():
    candidates = paid_attendance_candidates([_enrollment(classes=("Level 1", "Level 2"))])
    stored = {make_key({"customer_id": 1, "class_name": "Level 1", "role": "Leader"}, PAID_ATTENDANCE_KEY)}
    fresh = filter_new(candidates, stored)
    assert [r.class_name for r in fresh] == ["Level 2"]


def test_filter_new_dedups_within_batch():
    # two orders for the same class and role insert once
    candidates = paid_attendance_candidates([_enrollment(block=Block.A), _enrollment(block=Block.B)])
    assert len(candidates) == 2
    assert len(filter_new(candidates, set())) == 1


def test_filter_new_is_idempotent():
    candidates = paid_attendance_candidates([_enrollment(classes=("Level 1", "Level 3"))])
    first = filter_new(candidates, set())
    stored = {c.identity_key() for c in first}
    assert filter_new(candidates, stored) == []


def test_free_keys_match_rows_read_back_from_database():
    free = FreeClassRecord(order_id=1, customer_id=7, class_date=date(2025, 6, 3), role=Role.FOLLOWER)
    candidate = free_attendance_candidates([free])[0]
    # psycopg2 returns DATE columns as date objects
    stored = {make_key({"customer_id": 7, "class_date": date(2025, 6, 3), "role": "Follower"}, ("customer_id", "class_date", "role"))}
    assert filter_new([candidate], stored) == []


def test_null_role_matches_empty_string():
    row = PaidAttendanceRow(customer_id=1, class_name="Shines", role="", term=None, block=None)
    stored = {make_key({"customer_id": 1, "class_name": "Shines", "role": None}, PAID_ATTENDANCE_KEY)}
    assert filter_new([row], stored) == []


def test_filter_new_custom_key():
    assert filter_new([1, 2, 3, 2], {3}, key=lambda x: x) == [1, 2]
