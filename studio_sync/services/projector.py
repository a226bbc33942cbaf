from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from ..models.classification import Block, ClassificationResult, ClassName, Role
from ..models.orders import RawLineItem, RawOrder
from ..models.records import EnrollmentRecord, FreeClassRecord
from .bundles import expand
from .classifier import classify, is_social_title, parse_class_date

"""Order projection: raw orders -> paid enrollment and free-class records.

Per order, classified items are split into free classes, roleless solo
classes (Body Movement, Shines) and role-bearing level classes. Level classes
collapse into one EnrollmentRecord per role; solo classes into a single
roleless record; each free class with a usable date becomes a FreeClassRecord.

The proportional discount helper used by revenue reporting lives here too,
since it filters orders by the same classification.
"""

__all__ = [
    "FilteredAmount",
    "OrderProjector",
    "Projection",
    "ProjectionIssue",
    "ProjectionStats",
    "TermScope",
    "allocate_filtered_total",
    "classified_as",
]

logger = logging.getLogger(__name__)

DEFAULT_RECENCY_DAYS = 14


@dataclass(frozen=True)
class TermScope:
    """Which term (and optionally block) paid enrollment is limited to.

    term=None admits any term; block=NONE admits any block. Items without a
    term never qualify for paid enrollment.
    """
    term: str | None = None
    block: Block = Block.NONE

    def admits(self, result: ClassificationResult) -> bool:
        if result.term is None:
            return False
        if self.term is not None and result.term != self.term:
            return False
        if self.block is Block.NONE:
            return True
        return result.block.covers(self.block)


@dataclass
class ProjectionStats:
    orders: int = 0
    line_items: int = 0
    classification_misses: int = 0
    unparseable_dates: int = 0
    stale_free_classes: int = 0
    out_of_scope_items: int = 0
    roleless_level_items: int = 0
    anonymous_orders_skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ProjectionIssue:
    """Dropped item worth an audit log entry."""
    order_id: int
    error_type: str
    message: str


@dataclass(frozen=True)
class Projection:
    paid: list[EnrollmentRecord]
    free: list[FreeClassRecord]
    stats: ProjectionStats = field(default_factory=ProjectionStats)
    issues: list[ProjectionIssue] = field(default_factory=list)


@dataclass
class _RoleGroup:
    classes: list[str] = field(default_factory=list)
    term: str | None = None
    block: Block = Block.NONE

    def add(self, result: ClassificationResult) -> None:
        if result.class_name.value not in self.classes:
            self.classes.append(result.class_name.value)
        if self.term is None:
            self.term = result.term
        self.block = self.block.merge(result.block)


class OrderProjector:
    """Projects orders into EnrollmentRecord / FreeClassRecord rows.

    Args:
        as_of: reference date for the free-class recency filter and for the
            year assumed when parsing free-class dates
        scope: term scope for paid enrollment
        recency_days: free classes dated more than this many days before
            `as_of` are dropped
    """

    def __init__(
        self,
        *,
        as_of: date,
        scope: TermScope | None = None,
        recency_days: int = DEFAULT_RECENCY_DAYS,
    ) -> None:
        self.as_of = as_of
        self.scope = scope or TermScope()
        self.recency_days = recency_days

    @property
    def free_class_cutoff(self) -> date:
        return self.as_of - timedelta(days=self.recency_days)

    def project(self, orders: Iterable[RawOrder]) -> Projection:
        stats = ProjectionStats()
        issues: list[ProjectionIssue] = []
        paid: list[EnrollmentRecord] = []
        free: list[FreeClassRecord] = []
        for order in orders:
            stats.orders += 1
            order_paid, order_free = self._project_order(order, stats, issues)
            paid.extend(order_paid)
            free.extend(order_free)
        logger.debug(
            "projected orders=%d paid_records=%d free_records=%d stats=%s",
            stats.orders,
            len(paid),
            len(free),
            stats.as_dict(),
        )
        return Projection(paid=paid, free=free, stats=stats, issues=issues)

    def _project_order(
        self,
        order: RawOrder,
        stats: ProjectionStats,
        issues: list[ProjectionIssue],
    ) -> tuple[list[EnrollmentRecord], list[FreeClassRecord]]:
        role_groups: dict[Role, _RoleGroup] = {}
        solo = _RoleGroup()
        free: list[FreeClassRecord] = []
        has_enrollment_items = False

        for item in order.line_items:
            stats.line_items += 1
            result = classify(item.title, item.variant_title)

            if result.is_free:
                record = self._free_class_record(order, item, result, stats, issues)
                if record is not None:
                    free.append(record)
                continue

            if not result.is_known:
                if is_social_title(item.title):
                    continue
                stats.classification_misses += 1
                issues.append(
                    ProjectionIssue(order.id, "CLASSIFICATION_MISS", f"no rule matched title {item.title!r}")
                )
                continue

            if not self.scope.admits(result):
                stats.out_of_scope_items += 1
                logger.debug(
                    "order=%s item=%r variant=%r outside term scope", order.id, item.title, item.variant_title
                )
                continue

            has_enrollment_items = True
            if result.is_bundle:
                expanded = expand(item, order)
                if not any(r.is_level for r in expanded):
                    stats.roleless_level_items += 1
                    issues.append(
                        ProjectionIssue(order.id, "ROLELESS_BUNDLE", f"bundle {item.title!r} names no role")
                    )
            else:
                expanded = [result]

            for entry in expanded:
                if entry.is_solo:
                    solo.add(entry)
                elif entry.role.is_dance_role:
                    role_groups.setdefault(entry.role, _RoleGroup()).add(entry)
                else:
                    stats.roleless_level_items += 1
                    issues.append(
                        ProjectionIssue(
                            order.id,
                            "ROLELESS_LEVEL_ITEM",
                            f"{entry.class_name.value} without leader/follower in {item.variant_title!r}",
                        )
                    )

        if order.customer_id is None:
            if has_enrollment_items:
                stats.anonymous_orders_skipped += 1
                logger.info("order=%s has no customer; skipped for enrollment", order.id)
            return [], free

        paid: list[EnrollmentRecord] = []
        groups = list(role_groups.items())
        if solo.classes:
            groups.append((Role.NO_ROLE, solo))
        for role, group in groups:
            if not group.classes:
                continue
            paid.append(
                EnrollmentRecord(
                    order_id=order.id,
                    customer_id=order.customer_id,
                    order_date=order.created_at,
                    classes=tuple(group.classes),
                    role=role,
                    paid=order.is_paid,
                    notes=order.note,
                    term=group.term,
                    block=group.block,
                )
            )
        return paid, free

    def _free_class_record(
        self,
        order: RawOrder,
        item: RawLineItem,
        result: ClassificationResult,
        stats: ProjectionStats,
        issues: list[ProjectionIssue],
    ) -> FreeClassRecord | None:
        class_date = parse_class_date(item.variant_title, self.as_of)
        if class_date is None:
            stats.unparseable_dates += 1
            issues.append(
                ProjectionIssue(order.id, "UNPARSEABLE_DATE", f"no class date in variant {item.variant_title!r}")
            )
            logger.warning("order=%s free class variant %r has no parseable date", order.id, item.variant_title)
            return None
        if class_date < self.free_class_cutoff:
            stats.stale_free_classes += 1
            return None
        return FreeClassRecord(
            order_id=order.id,
            customer_id=order.customer_id,
            class_date=class_date,
            role=result.role,
            notes=order.note,
        )


@dataclass(frozen=True)
class FilteredAmount:
    items_value: Decimal
    filtered_items_value: Decimal
    proportional_discount: Decimal
    filtered_total: Decimal


def allocate_filtered_total(
    order: RawOrder,
    predicate: Callable[[RawLineItem], bool],
) -> FilteredAmount:
    """Share of an order's value attributable to the items matching `predicate`.

    The order-level discount is spread in proportion to item value:
    ``discount * filtered / total``; ``filtered_total = filtered - that share``.
    """
    items_value = sum((i.value for i in order.line_items), Decimal("0"))
    filtered_value = sum((i.value for i in order.line_items if predicate(i)), Decimal("0"))
    if items_value == 0:
        share = Decimal("0")
    else:
        share = order.total_discounts * filtered_value / items_value
    return FilteredAmount(
        items_value=items_value,
        filtered_items_value=filtered_value,
        proportional_discount=share,
        filtered_total=filtered_value - share,
    )


def classified_as(*class_names: ClassName) -> Callable[[RawLineItem], bool]:
    """Predicate for allocate_filtered_total matching items by classification."""
    wanted = set(class_names)

    def predicate(item: RawLineItem) -> bool:
        return classify(item.title, item.variant_title).class_name in wanted

    return predicate
