from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from .classification import Block, Role

"""Projected records and attendance rows.

EnrollmentRecord / FreeClassRecord are the disposable "orders" snapshot rows.
PaidAttendanceRow / FreeAttendanceRow / SocialAttendanceRecord are append-only
rows identified by an identity key; `identity_key()` on each returns the
normalized tuple used for deduplication, and `to_row()` the column mapping
written to the store.
"""

__all__ = [
    "EnrollmentRecord",
    "FREE_ATTENDANCE_KEY",
    "FREE_CLASS_TITLE",
    "FreeAttendanceRow",
    "FreeClassRecord",
    "PAID_ATTENDANCE_KEY",
    "PaidAttendanceRow",
    "SOCIAL_ATTENDANCE_KEY",
    "SocialAttendanceRecord",
    "make_key",
]

FREE_CLASS_TITLE = "Free Class - New York Salsa"

PAID_ATTENDANCE_KEY = ("customer_id", "class_name", "role")
FREE_ATTENDANCE_KEY = ("customer_id", "class_date", "role")
SOCIAL_ATTENDANCE_KEY = ("order_id", "social_date")

WEEK_COLUMNS = tuple(f"week_{n}" for n in range(1, 6))


def _normalize(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def make_key(row: dict[str, Any], columns: tuple[str, ...]) -> tuple[Any, ...]:
    """Identity key of a stored or candidate row.

    Dates compare as YYYY-MM-DD strings and NULL compares as "" so that keys
    read back from the database match freshly projected ones.
    """
    return tuple(_normalize(row.get(c)) for c in columns)


@dataclass(frozen=True)
class EnrollmentRecord:
    """Paid enrollment for one (order, role group)."""
    order_id: int
    customer_id: int | None
    order_date: datetime
    classes: tuple[str, ...]
    role: Role
    paid: bool
    notes: str = ""
    term: str | None = None
    block: Block = Block.NONE

    def to_row(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "order_date": self.order_date,
            "classes": list(self.classes),
            "role": self.role.column_value,
            "paid": self.paid,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class FreeClassRecord:
    order_id: int
    customer_id: int | None
    class_date: date
    role: Role
    notes: str = ""
    class_: str = FREE_CLASS_TITLE
    paid: bool = False

    def to_row(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "class_date": self.class_date.isoformat(),
            "class": self.class_,
            "role": self.role.column_value,
            "paid": self.paid,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class PaidAttendanceRow:
    customer_id: int
    class_name: str
    role: str
    term: str | None
    block: str | None
    notes: str = ""

    def identity_key(self) -> tuple[Any, ...]:
        return make_key(self.to_row(), PAID_ATTENDANCE_KEY)

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "customer_id": self.customer_id,
            "class_name": self.class_name,
            "role": self.role,
            "term": self.term,
            "block": self.block,
        }
        # new rows start with no weeks attended; check-in flips these later
        row.update({col: False for col in WEEK_COLUMNS})
        row["notes"] = self.notes
        return row


@dataclass(frozen=True)
class FreeAttendanceRow:
    customer_id: int
    class_date: date
    role: str
    attended: bool = False

    def identity_key(self) -> tuple[Any, ...]:
        return make_key(self.to_row(), FREE_ATTENDANCE_KEY)

    def to_row(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "class_date": self.class_date.isoformat(),
            "role": self.role,
            "attended": self.attended,
        }


@dataclass(frozen=True)
class SocialAttendanceRecord:
    order_id: int
    customer_id: int | None
    customer_name: str
    social_name: str
    social_date: date
    total_tickets: int
    order_number: str | None = None
    customer_email: str = ""
    tickets_used: int = 0
    special_guest: bool = False

    def identity_key(self) -> tuple[Any, ...]:
        return make_key(self.to_row(), SOCIAL_ATTENDANCE_KEY)

    def to_row(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "social_name": self.social_name,
            "social_date": self.social_date.isoformat(),
            "total_tickets": self.total_tickets,
            "tickets_used": self.tickets_used,
            "special_guest": self.special_guest,
        }
