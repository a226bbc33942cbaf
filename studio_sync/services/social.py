from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date

from ..models.orders import Customer, RawOrder
from ..models.records import SocialAttendanceRecord
from .classifier import SOCIAL_MARKER, is_social_title, parse_class_date
from .projector import ProjectionIssue

"""Social-event ticket projection.

Paid line items whose title mentions "social" become one
SocialAttendanceRecord per (order, social date), with the ticket count taken
from the item quantities. The event date is read from the variant, falling
back to the title ("Social - June 14th").
"""

__all__ = [
    "SOCIAL_MARKER",
    "project_social",
]

logger = logging.getLogger(__name__)


def _display_name(order: RawOrder, customers: Mapping[int, Customer]) -> str:
    if order.customer_id is not None and order.customer_id in customers:
        return customers[order.customer_id].display_name
    if order.customer_name:
        return order.customer_name
    return f"Order #{order.order_number or order.id}"


def project_social(
    orders: Iterable[RawOrder],
    *,
    as_of: date,
    customers: Mapping[int, Customer] | None = None,
) -> tuple[list[SocialAttendanceRecord], list[ProjectionIssue]]:
    customers = customers or {}
    records: list[SocialAttendanceRecord] = []
    issues: list[ProjectionIssue] = []

    for order in orders:
        if not order.is_paid:
            continue
        tickets: dict[date, int] = {}
        names: dict[date, str] = {}
        for item in order.line_items:
            if not is_social_title(item.title):
                continue
            social_date = parse_class_date(item.variant_title, as_of) or parse_class_date(item.title, as_of)
            if social_date is None:
                issues.append(
                    ProjectionIssue(order.id, "UNPARSEABLE_DATE", f"no social date in {item.title!r}")
                )
                logger.warning("order=%s social item %r has no parseable date", order.id, item.title)
                continue
            tickets[social_date] = tickets.get(social_date, 0) + item.quantity
            names.setdefault(social_date, item.title)

        for social_date, count in tickets.items():
            records.append(
                SocialAttendanceRecord(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    customer_name=_display_name(order, customers),
                    customer_email=order.customer_email,
                    social_name=names[social_date],
                    social_date=social_date,
                    total_tickets=count,
                )
            )
    return records, issues
