# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from studio_sync.db.attendance_store import ReconciliationLockedError, StoreWriteError
from studio_sync.logging.error_log import ErrorLogBuffer
from studio_sync.logging.init import reset_logging
from studio_sync.models.config_models import TableNames
from studio_sync.models.orders import Customer, RawLineItem, RawOrder
from studio_sync.models.records import (
    FREE_ATTENDANCE_KEY,
    PAID_ATTENDANCE_KEY,
    SOCIAL_ATTENDANCE_KEY,
    make_key,
)
from studio_sync.sources.base import SourceFetchError


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """timezone: UTC
term:
  name: Term 2
  number: "2"
  start_date: 2025-05-05
  weeks_before: 5
free_class:
  recency_days: 14
shopify:
  store_url: example.myshopify.com
  api_version: "2024-01"
tables:
  paid_orders: paid_orders
  free_orders: free_orders
  paid_attendance: paid_attendance
  free_attendance: free_attendance
  social_attendance: social_attendance
  customers: customers
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "sync.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def make_order():
    """Build a RawOrder from (title, variant) pairs or RawLineItems."""
    counter = iter(range(1000, 100000))

    def _make(
        items=(),
        *,
        order_id: int | None = None,
        customer_id: int | None = 1,
        created_at: datetime | None = None,
        financial_status: str = "paid",
        note: str = "",
        total_discounts: str = "0",
        first_name: str = "Ana",
        last_name: str = "Lopez",
        email: str = "ana@example.com",
    ) -> RawOrder:
        line_items = tuple(
            i if isinstance(i, RawLineItem) else RawLineItem(title=i[0], variant_title=i[1], price=Decimal("50"))
            for i in items
        )
        total = sum((i.value for i in line_items), Decimal("0")) - Decimal(total_discounts)
        return RawOrder(
            id=order_id if order_id is not None else next(counter),
            customer_id=customer_id,
            created_at=created_at or datetime(2025, 5, 20, 18, 0, tzinfo=timezone.utc),
            financial_status=financial_status,
            note=note,
            total_price=total,
            total_discounts=Decimal(total_discounts),
            line_items=line_items,
            order_number=None,
            customer_first_name=first_name,
            customer_last_name=last_name,
            customer_email=email,
        )

    return _make


class InMemoryStore:
    """AttendanceStore double keeping tables as lists of row dicts."""

    def __init__(self, tables: TableNames | None = None) -> None:
        t = tables or TableNames()
        self.key_columns = {
            t.paid_attendance: PAID_ATTENDANCE_KEY,
            t.free_attendance: FREE_ATTENDANCE_KEY,
            t.social_attendance: SOCIAL_ATTENDANCE_KEY,
        }
        self.rows: dict[str, list[dict]] = defaultdict(list)
        self.fail_tables: set[str] = set()
        self.lock_available = True
        self.lock_held = False
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, table: str, attempted: int) -> None:
        if table in self.fail_tables:
            raise StoreWriteError(table, attempted=attempted, written=0, message="simulated failure")

    def read_keys(self, table):
        self.calls.append(("read_keys", table))
        cols = self.key_columns[table]
        return {make_key(r, cols) for r in self.rows[table]}

    def insert_rows(self, table, rows):
        self.calls.append(("insert_rows", table))
        self._maybe_fail(table, len(rows))
        self.rows[table].extend(dict(r) for r in rows)
        return len(rows)

    def replace_all(self, table, rows):
        self.calls.append(("replace_all", table))
        self._maybe_fail(table, len(rows))
        self.rows[table] = [dict(r) for r in rows]
        return len(rows)

    def update_row(self, table, key, patch):
        self.calls.append(("update_row", table))
        updated = 0
        for row in self.rows[table]:
            if all(row.get(k) == v for k, v in key.items()):
                row.update(patch)
                updated += 1
        return updated

    @contextmanager
    def sync_lock(self):
        if not self.lock_available or self.lock_held:
            raise ReconciliationLockedError("another sync holds lock 7205")
        self.lock_held = True
        try:
            yield
        finally:
            self.lock_held = False


class FakeOrderSource:
    def __init__(self, orders=(), error: str | None = None) -> None:
        self.orders = list(orders)
        self.error = error
        self.since_calls: list[datetime] = []

    def fetch_orders(self, since):
        self.since_calls.append(since)
        if self.error:
            raise SourceFetchError(self.error)
        return list(self.orders)


class FakeCustomerDirectory:
    def __init__(self, customers=(), error: str | None = None) -> None:
        self.customers = list(customers)
        self.error = error

    def fetch_customers(self):
        if self.error:
            raise SourceFetchError(self.error)
        return list(self.customers)


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def order_source_factory():
    return FakeOrderSource


@pytest.fixture()
def customer_directory_factory():
    return FakeCustomerDirectory


@pytest.fixture()
def customers() -> list[Customer]:
    return [
        Customer(customer_id=1, first_name="Ana", last_name="Lopez", email="ana@example.com"),
        Customer(customer_id=2, first_name="Ben", last_name="Okafor", email="ben@example.com"),
    ]


@pytest.fixture()
def error_log(tmp_path: Path) -> ErrorLogBuffer:
    return ErrorLogBuffer(logs_dir=tmp_path / "logs")
