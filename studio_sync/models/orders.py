from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

"""Source-side models: orders and line items as delivered by the shop,
plus customer directory entries.

`RawOrder.from_dict` accepts the Shopify Admin API order JSON shape. Only the
fields the sync needs are kept; everything else is ignored.
"""

__all__ = [
    "Customer",
    "RawLineItem",
    "RawOrder",
]


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {value!r}") from e


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        raise ValueError("order is missing created_at")
    # Shopify sends ISO8601 with offset, older payloads use a trailing Z
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class RawLineItem:
    title: str
    variant_title: str | None
    price: Decimal = Decimal("0")
    quantity: int = 1

    @property
    def value(self) -> Decimal:
        """Line value before order-level discounts."""
        return self.price * self.quantity

    @staticmethod
    def from_dict(data: dict[str, Any]) -> RawLineItem:
        quantity = data.get("quantity")
        return RawLineItem(
            title=data.get("title") or "",
            variant_title=data.get("variant_title"),
            price=_to_decimal(data.get("price")),
            # missing means 1; an explicit 0 is kept
            quantity=1 if quantity is None else int(quantity),
        )


@dataclass(frozen=True)
class RawOrder:
    id: int
    customer_id: int | None
    created_at: datetime
    financial_status: str
    note: str
    total_price: Decimal
    total_discounts: Decimal
    line_items: tuple[RawLineItem, ...] = field(default_factory=tuple)
    order_number: str | None = None
    customer_first_name: str = ""
    customer_last_name: str = ""
    customer_email: str = ""

    @property
    def is_paid(self) -> bool:
        return self.financial_status == "paid"

    @property
    def customer_name(self) -> str:
        return f"{self.customer_first_name} {self.customer_last_name}".strip()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> RawOrder:
        """Build a RawOrder from one Shopify order payload."""
        customer = data.get("customer") or {}
        number = data.get("order_number") or data.get("name")
        return RawOrder(
            id=data["id"],
            customer_id=customer.get("id"),
            created_at=_parse_timestamp(data.get("created_at")),
            financial_status=data.get("financial_status") or "",
            note=data.get("note") or "",
            total_price=_to_decimal(data.get("total_price")),
            total_discounts=_to_decimal(data.get("total_discounts")),
            line_items=tuple(RawLineItem.from_dict(i) for i in data.get("line_items") or []),
            order_number=str(number) if number is not None else None,
            customer_first_name=customer.get("first_name") or "",
            customer_last_name=customer.get("last_name") or "",
            customer_email=customer.get("email") or "",
        )


@dataclass(frozen=True)
class Customer:
    """Entry from the customer directory, used for display names only."""
    customer_id: int
    first_name: str
    last_name: str
    email: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Unknown"
