from __future__ import annotations

from datetime import date
from decimal import Decimal

from studio_sync.models.orders import RawLineItem
from studio_sync.services.social import project_social
from studio_sync.sources.customers import customer_map

AS_OF = date(2025, 6, 10)


def test_one_record_per_order_and_date(make_order):
    order = make_order(
        [
            RawLineItem("Friday Social", "14th June", price=Decimal("15"), quantity=2),
            RawLineItem("Friday Social", "14th June", price=Decimal("15"), quantity=1),
            RawLineItem("Friday Social", "21st June", price=Decimal("15"), quantity=1),
            RawLineItem("Level 1", "Term 2 / Leader"),
        ]
    )
    records, issues = project_social([order], as_of=AS_OF)
    assert issues == []
    assert {(r.social_date, r.total_tickets) for r in records} == {
        (date(2025, 6, 14), 3),
        (date(2025, 6, 21), 1),
    }
    assert all(r.tickets_used == 0 for r in records)


def test_date_falls_back_to_title(make_order):
    order = make_order([("Social - June 14th", None), ("Social - 14th June", "Default Title")])
    records, _ = project_social([order], as_of=AS_OF)
    assert [r.social_date for r in records] == [date(2025, 6, 14)]


def test_unpaid_orders_ignored(make_order):
    order = make_order([("Friday Social", "14th June")], financial_status="pending")
    assert project_social([order], as_of=AS_OF) == ([], [])


def test_unparseable_social_date_reported(make_order):
    order = make_order([("Friday Social", "Default Title")])
    records, issues = project_social([order], as_of=AS_OF)
    assert records == []
    assert issues[0].error_type == "UNPARSEABLE_DATE"


def test_name_from_directory_then_order(make_order, customers):
    known = make_order([("Friday Social", "14th June")], customer_id=2, first_name="B", last_name="O")
    guest = make_order([("Friday Social", "14th June")], customer_id=None, first_name="Cara", last_name="Diaz")
    records, _ = project_social([known, guest], as_of=AS_OF, customers=customer_map(customers))
    assert [r.customer_name for r in records] == ["Ben Okafor", "Cara Diaz"]


def test_anonymous_order_named_by_number(make_order):
    order = make_order([("Friday Social", "14th June")], customer_id=None, first_name="", last_name="")
    records, _ = project_social([order], as_of=AS_OF)
    assert records[0].customer_name == f"Order #{order.id}"
