from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

from ..models.records import make_key
from .batch_insert import BatchMetrics, batch_insert

"""Attendance store: the reconciliation engine's view of the database.

`AttendanceStore` is the collaborator contract. `PostgresAttendanceStore`
implements it over a psycopg2 cursor on an autocommit connection; every write
runs inside its own explicit BEGIN/COMMIT so that one table failing never
rolls back another.
"""

__all__ = [
    "AttendanceStore",
    "PostgresAttendanceStore",
    "ReconciliationLockedError",
    "StoreError",
    "StoreWriteError",
]

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for attendance store failures."""
    pass


class StoreWriteError(StoreError):
    def __init__(self, table: str, attempted: int, written: int, message: str) -> None:
        super().__init__(f"{table}: {message} (attempted={attempted} written={written})")
        self.table = table
        self.attempted = attempted
        self.written = written


class ReconciliationLockedError(StoreError):
    """Another reconciliation run holds the sync lock."""
    pass


Key = tuple[Any, ...]


class AttendanceStore(Protocol):
    def read_keys(self, table: str) -> set[Key]: ...

    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int: ...

    def replace_all(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int: ...

    def update_row(self, table: str, key: Mapping[str, Any], patch: Mapping[str, Any]) -> int: ...

    def sync_lock(self) -> Any: ...


def _columns_and_values(rows: Sequence[Mapping[str, Any]]) -> tuple[list[str], list[list[Any]]]:
    columns = list(rows[0].keys())
    return columns, [[row.get(c) for c in columns] for row in rows]


class PostgresAttendanceStore:
    """AttendanceStore over a psycopg2 cursor.

    Args:
        cursor: cursor of a connection with autocommit enabled
        key_columns: identity key columns per table name, used by read_keys
        lock_id: advisory lock id serializing reconciliation runs
        page_size: execute_values page size
    """

    def __init__(
        self,
        cursor: Any,
        key_columns: Mapping[str, tuple[str, ...]],
        *,
        lock_id: int = 7205,
        page_size: int = 1000,
    ) -> None:
        self.cursor = cursor
        self.key_columns = dict(key_columns)
        self.lock_id = lock_id
        self.page_size = page_size

    def _log_batch(self, table: str):
        def callback(metrics: BatchMetrics) -> None:
            logger.debug("table=%s batch_size=%d elapsed=%.3fs", table, metrics.batch_size, metrics.elapsed_seconds)
        return callback

    def _rollback(self, table: str) -> None:
        try:
            self.cursor.execute("ROLLBACK")
        except Exception as e:
            logger.error("table=%s rollback failed: %s", table, e)

    def read_keys(self, table: str) -> set[Key]:
        columns = self.key_columns.get(table)
        if not columns:
            raise StoreError(f"no identity key configured for table {table}")
        cols_sql = ",".join(f'"{c}"' for c in columns)
        try:
            self.cursor.execute(f"SELECT {cols_sql} FROM {table}")
            fetched = self.cursor.fetchall()
        except Exception as e:
            raise StoreError(f"{table}: reading identity keys failed: {e}") from e
        return {make_key(dict(zip(columns, r)), columns) for r in fetched}

    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        columns, values = _columns_and_values(rows)
        try:
            self.cursor.execute("BEGIN")
            result = batch_insert(
                self.cursor,
                table=table,
                columns=columns,
                rows=values,
                page_size=self.page_size,
                metrics_callback=self._log_batch(table),
            )
            self.cursor.execute("COMMIT")
        except Exception as e:
            self._rollback(table)
            raise StoreWriteError(table, attempted=len(rows), written=0, message=str(e)) from e
        return result.inserted_rows

    def replace_all(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """Delete every row of `table` and insert `rows`, in one transaction."""
        try:
            self.cursor.execute("BEGIN")
            self.cursor.execute(f"DELETE FROM {table}")
            inserted = 0
            if rows:
                columns, values = _columns_and_values(rows)
                inserted = batch_insert(
                    self.cursor,
                    table=table,
                    columns=columns,
                    rows=values,
                    page_size=self.page_size,
                    metrics_callback=self._log_batch(table),
                ).inserted_rows
            self.cursor.execute("COMMIT")
        except Exception as e:
            self._rollback(table)
            raise StoreWriteError(table, attempted=len(rows), written=0, message=str(e)) from e
        return inserted

    def update_row(self, table: str, key: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
        """Patch the row identified by `key`; used by the check-in flow (week flags)."""
        if not patch:
            return 0
        set_sql = ", ".join(f'"{c}" = %s' for c in patch)
        where_sql = " AND ".join(f'"{c}" = %s' for c in key)
        params = [*patch.values(), *key.values()]
        try:
            self.cursor.execute("BEGIN")
            self.cursor.execute(f"UPDATE {table} SET {set_sql} WHERE {where_sql}", params)
            updated = self.cursor.rowcount
            self.cursor.execute("COMMIT")
        except Exception as e:
            self._rollback(table)
            raise StoreWriteError(table, attempted=1, written=0, message=str(e)) from e
        return updated

    @contextmanager
    def sync_lock(self) -> Iterator[None]:
        """Hold a session advisory lock for the duration of a run."""
        try:
            self.cursor.execute("SELECT pg_try_advisory_lock(%s)", (self.lock_id,))
            acquired = bool(self.cursor.fetchone()[0])
        except Exception as e:
            raise StoreError(f"advisory lock query failed: {e}") from e
        if not acquired:
            raise ReconciliationLockedError(f"another sync holds lock {self.lock_id}")
        try:
            yield
        finally:
            try:
                self.cursor.execute("SELECT pg_advisory_unlock(%s)", (self.lock_id,))
            except Exception as e:
                logger.error("releasing advisory lock %s failed: %s", self.lock_id, e)
