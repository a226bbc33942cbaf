from __future__ import annotations

from typing import Any

from ..models.orders import Customer
from .base import SourceFetchError

"""Customer directory backed by the `customers` table."""

__all__ = [
    "PostgresCustomerDirectory",
    "customer_map",
]


class PostgresCustomerDirectory:
    def __init__(self, cursor: Any, table: str = "customers") -> None:
        self.cursor = cursor
        self.table = table

    def fetch_customers(self) -> list[Customer]:
        try:
            self.cursor.execute(
                f"SELECT customer_id, first_name, last_name, email FROM {self.table}"
            )
            rows = self.cursor.fetchall()
        except Exception as e:
            raise SourceFetchError(f"customer directory unavailable: {e}") from e
        return [
            Customer(
                customer_id=r[0],
                first_name=r[1] or "",
                last_name=r[2] or "",
                email=r[3] or "",
            )
            for r in rows
        ]


def customer_map(customers: list[Customer]) -> dict[int, Customer]:
    return {c.customer_id: c for c in customers}
