from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from studio_sync.models.classification import Block, Role
from studio_sync.models.orders import RawOrder
from studio_sync.models.records import EnrollmentRecord, FreeClassRecord, SocialAttendanceRecord
from studio_sync.models.reconciliation_report import ReconciliationReport, StepResult, StepStatus

T0 = datetime(2025, 6, 5, tzinfo=timezone.utc)


class TestReconciliationReport:
    def _report(self) -> ReconciliationReport:
        return ReconciliationReport(
            start_time=T0,
            end_time=T0,
            elapsed_seconds=0.5,
            steps=[
                StepResult(step="fetch", status=StepStatus.SUCCESS),
                StepResult(step="paid_attendance", status=StepStatus.SUCCESS, table="paid_attendance", attempted=4, written=4),
                StepResult(step="free_attendance", status=StepStatus.FAILED, table="free_attendance", attempted=2, message="boom"),
                StepResult(step="social_attendance", status=StepStatus.SUCCESS, table="social_attendance", attempted=1, written=1),
            ],
            status_messages=["Fetched 3 orders.", "Failed to update free attendance: boom"],
        )

    def test_step_partition(self):
        report = self._report()
        assert report.succeeded_steps == ["fetch", "paid_attendance", "social_attendance"]
        assert report.failed_steps == ["free_attendance"]
        assert report.failed_step == "free_attendance"
        assert not report.ok

    def test_totals_and_table_stats(self):
        report = self._report()
        assert report.total_inserted_rows == 5
        assert report.table_stats == {
            "paid_attendance": (4, 4),
            "free_attendance": (2, 0),
            "social_attendance": (1, 1),
        }

    def test_message_joins_status_lines(self):
        assert self._report().message == "Fetched 3 orders. Failed to update free attendance: boom"

    def test_step_lookup(self):
        report = self._report()
        assert report.step("free_attendance").message == "boom"
        assert report.step("customers") is None


class TestRecordRows:
    def test_enrollment_row(self):
        record = EnrollmentRecord(
            order_id=1,
            customer_id=7,
            order_date=T0,
            classes=("Body Movement", "Shines"),
            role=Role.NO_ROLE,
            paid=True,
            term="2",
            block=Block.B,
        )
        row = record.to_row()
        assert row["classes"] == ["Body Movement", "Shines"]
        assert row["role"] == ""
        assert set(row) == {"order_id", "customer_id", "order_date", "classes", "role", "paid", "notes"}

    def test_free_class_row(self):
        row = FreeClassRecord(order_id=1, customer_id=7, class_date=date(2025, 5, 27), role=Role.LEADER).to_row()
        assert row == {
            "order_id": 1,
            "customer_id": 7,
            "class_date": "2025-05-27",
            "class": "Free Class - New York Salsa",
            "role": "Leader",
            "paid": False,
            "notes": "",
        }

    def test_social_identity_key(self):
        record = SocialAttendanceRecord(
            order_id=5,
            customer_id=None,
            customer_name="Order #5",
            social_name="Friday Social",
            social_date=date(2025, 6, 14),
            total_tickets=2,
        )
        assert record.identity_key() == (5, "2025-06-14")


class TestRawOrder:
    def test_from_dict_defaults(self):
        order = RawOrder.from_dict({"id": 3, "created_at": "2025-05-20T10:00:00Z", "line_items": [{"title": "Shines"}]})
        assert order.customer_id is None
        assert order.created_at.tzinfo is not None
        assert order.line_items[0].variant_title is None
        assert order.line_items[0].quantity == 1
        assert order.total_discounts == Decimal("0")
        assert not order.is_paid

    def test_invalid_amount(self):
        with pytest.raises(ValueError, match="invalid amount"):
            RawOrder.from_dict({"id": 3, "created_at": "2025-05-20T10:00:00Z", "total_price": "abc"})

    def test_zero_quantity_kept(self):
        order = RawOrder.from_dict(
            {
                "id": 4,
                "created_at": "2025-05-20T10:00:00Z",
                "line_items": [
                    {"title": "Friday Social", "price": "20.00", "quantity": 0},
                    {"title": "Shines", "price": "50.00", "quantity": None},
                ],
            }
        )
        assert [i.quantity for i in order.line_items] == [0, 1]
        assert order.line_items[0].value == Decimal("0")
