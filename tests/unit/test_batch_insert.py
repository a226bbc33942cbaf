from __future__ import annotations

import pytest

from studio_sync.db.batch_insert import BatchInsertError, BatchMetrics, InsertResult, batch_insert


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.pages: list[int] = []


# execute_values is patched inside the module so the logic is tested
# without a live database

@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import studio_sync.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=1000, template=None):
        if getattr(cursor, "fail", False):
            raise RuntimeError("duplicate key value violates unique constraint")
        cursor.queries.append(sql)
        cursor.pages.append(page_size)

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(
        cur, table="paid_attendance", columns=["customer_id", "class_name"], rows=[[1, "Level 1"], [2, "Shines"]]
    )
    assert isinstance(res, InsertResult)
    assert res.inserted_rows == 2
    assert cur.queries == ['INSERT INTO paid_attendance ("customer_id","class_name") VALUES %s']


def test_batch_insert_empty_rows():
    cur = DummyCursor()
    res = batch_insert(cur, table="paid_attendance", columns=["customer_id"], rows=[])
    assert res.inserted_rows == 0
    assert cur.queries == []


def test_batch_insert_page_size_passed_through():
    cur = DummyCursor()
    batch_insert(cur, table="t", columns=["c"], rows=[[1]], page_size=50)
    assert cur.pages == [50]


def test_batch_insert_wraps_driver_errors():
    cur = DummyCursor()
    cur.fail = True
    with pytest.raises(BatchInsertError, match="duplicate key"):
        batch_insert(cur, table="t", columns=["c"], rows=[[1]])


def test_metrics_callback_receives_batch_size():
    seen: list[BatchMetrics] = []
    batch_insert(DummyCursor(), table="t", columns=["c"], rows=[[1], [2], [3]], metrics_callback=seen.append)
    assert len(seen) == 1
    assert seen[0].batch_size == 3
    assert seen[0].elapsed_seconds >= 0


def test_metrics_callback_runs_on_failure():
    seen: list[BatchMetrics] = []
    cur = DummyCursor()
    cur.fail = True
    with pytest.raises(BatchInsertError):
        batch_insert(cur, table="t", columns=["c"], rows=[[1]], metrics_callback=seen.append)
    assert len(seen) == 1
