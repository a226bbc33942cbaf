from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pandas as pd

from ..models.classification import Block, ClassificationResult, ClassName, LEVEL_CLASSES, Role, SOLO_CLASSES
from ..models.orders import Customer, RawLineItem, RawOrder
from .bundles import expand
from .classifier import classify
from .projector import TermScope, allocate_filtered_total, classified_as

"""Reports computed from classification output.

- block re-enrollment: who took a class in block A and did (or did not) sign
  up for it again in block B; purchases for the whole term count towards both
- revenue per class and per term/block, discounts spread proportionally
- class popularity by role and term
- free class to paid enrollment conversion
- enrollment timing: early vs day-of signups for a block's level classes

Every report has a `to_dataframe()` and is written with export_report_csv.
"""

__all__ = [
    "BLOCK_WEEKS",
    "BlockEnrollmentAnalysis",
    "ClassPopularity",
    "ClassPopularityRow",
    "ConversionRow",
    "EnrollmentAnalysisRow",
    "EnrollmentTiming",
    "FreeClassConversion",
    "TimingRow",
    "analyze_block_enrollment",
    "class_popularity",
    "enrollment_timing",
    "export_enrollment_csv",
    "export_report_csv",
    "free_class_conversion",
    "revenue_by_class",
    "revenue_by_term",
    "revenue_dataframe",
]

CATEGORY_CONTINUING = "Enrolled for {block}"
CATEGORY_NOT_CONTINUING = "Not Enrolled for {block}"
CATEGORY_ALL = "All Current {block} Enrollments"
BUNDLE_DETAILS = "Platinum/Unlimited Bundle"

# a block runs five weeks (week_1..week_5 attendance columns)
BLOCK_WEEKS = 5
# early signups are counted from this many days before the class start
DEFAULT_EARLY_WINDOW_DAYS = 21

ROLE_COLUMNS = (Role.LEADER, Role.FOLLOWER, Role.NO_ROLE)
# (bucket, max days to convert); anything later is "over_month"
CONVERSION_BUCKETS = (("same_day", 0), ("within_week", 7), ("within_month", 30))

CSV_COLUMNS = {
    "customer_id": "Customer ID",
    "name": "Name",
    "email": "Email",
    "order_id": "Order ID",
    "class_name": "Class",
    "role": "Role",
    "order_details": "Order Details",
    "notes": "Notes",
    "category": "Category",
}


@dataclass(frozen=True)
class EnrollmentAnalysisRow:
    customer_id: int
    name: str
    email: str
    order_id: int
    class_name: str
    role: str
    order_details: str
    notes: str
    category: str


@dataclass(frozen=True)
class _Enrollment:
    class_name: str
    role: str
    order_id: int


@dataclass
class _CustomerEnrollments:
    customer_id: int
    name: str
    email: str
    has_bundle: bool = False
    from_block: list[_Enrollment] = field(default_factory=list)
    to_block: list[_Enrollment] = field(default_factory=list)


@dataclass(frozen=True)
class BlockEnrollmentAnalysis:
    term: str
    from_block: Block
    to_block: Block
    customers_analyzed: int
    continuing: list[EnrollmentAnalysisRow]
    not_continuing: list[EnrollmentAnalysisRow]
    current: list[EnrollmentAnalysisRow]

    @property
    def rows(self) -> list[EnrollmentAnalysisRow]:
        return self.continuing + self.not_continuing + self.current

    def summary_lines(self) -> list[str]:
        label = f"{self.term}{self.to_block.value.lower()}"
        return [
            f"Term {label} Enrollment Analysis",
            f"Exported: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            f"Total Customers Analyzed: {self.customers_analyzed}",
            f"Unique Customers Enrolled in {label}: {len({r.customer_id for r in self.continuing})}",
            f"Unique Customers NOT Enrolled in {label}: {len({r.customer_id for r in self.not_continuing})}",
            f"Total {label} Enrollments (from {self.term}{self.from_block.value.lower()} who enrolled): {len(self.continuing)}",
            f"Total Missing {label} Enrollments: {len(self.not_continuing)}",
            f"Total All Current {label} Enrollments: {len(self.current)}",
            "",
        ]

    def to_dataframe(self) -> pd.DataFrame:
        frame = pd.DataFrame([asdict(r) for r in self.rows], columns=list(CSV_COLUMNS))
        return frame.rename(columns=CSV_COLUMNS)


def _customer_entry(
    order: RawOrder,
    customers: Mapping[int, Customer],
    table: dict[int, _CustomerEnrollments],
) -> _CustomerEnrollments:
    entry = table.get(order.customer_id)  # type: ignore[arg-type]
    if entry is None:
        known = customers.get(order.customer_id)  # type: ignore[arg-type]
        entry = _CustomerEnrollments(
            customer_id=order.customer_id,  # type: ignore[arg-type]
            name=known.display_name if known else (order.customer_name or "Unknown"),
            email=(known.email if known else "") or order.customer_email,
        )
        table[order.customer_id] = entry  # type: ignore[index]
    return entry


def analyze_block_enrollment(
    orders: Iterable[RawOrder],
    *,
    term: str,
    from_block: Block = Block.A,
    to_block: Block = Block.B,
    customers: Mapping[int, Customer] | None = None,
) -> BlockEnrollmentAnalysis:
    customers = customers or {}
    table: dict[int, _CustomerEnrollments] = {}
    scope = TermScope(term=term)

    for order in orders:
        if order.customer_id is None:
            continue
        entry = _customer_entry(order, customers, table)
        for item in order.line_items:
            result = classify(item.title, item.variant_title)
            if result.is_free or not result.is_known or not scope.admits(result):
                continue
            if result.is_bundle:
                entry.has_bundle = True
                expanded = expand(item, order)
            else:
                expanded = [result]
            for enrolled in expanded:
                if enrolled.is_level and not enrolled.role.is_dance_role:
                    continue
                role = enrolled.role.value if enrolled.is_level else "No Role"
                e = _Enrollment(enrolled.class_name.value, role, order.id)
                if enrolled.block.covers(from_block):
                    entry.from_block.append(e)
                if enrolled.block.covers(to_block):
                    entry.to_block.append(e)

    label = f"{term}{to_block.value.lower()}"
    continuing: list[EnrollmentAnalysisRow] = []
    not_continuing: list[EnrollmentAnalysisRow] = []
    current: list[EnrollmentAnalysisRow] = []
    analyzed = 0

    for entry in table.values():
        if not entry.from_block and not entry.to_block:
            continue
        analyzed += 1
        details = BUNDLE_DETAILS if entry.has_bundle else None
        to_keys = {(e.class_name, e.role) for e in entry.to_block}

        def row(e: _Enrollment, category: str, notes: str) -> EnrollmentAnalysisRow:
            return EnrollmentAnalysisRow(
                customer_id=entry.customer_id,
                name=entry.name,
                email=entry.email,
                order_id=e.order_id,
                class_name=e.class_name,
                role=e.role,
                order_details=details or e.class_name,
                notes=notes,
                category=category.format(block=label),
            )

        for e in entry.from_block:
            if (e.class_name, e.role) in to_keys:
                notes = "Bundle includes both blocks" if entry.has_bundle else ""
                continuing.append(row(e, CATEGORY_CONTINUING, notes))
            else:
                others = sorted({o.class_name for o in entry.to_block if o.class_name != e.class_name})
                notes = f"Has enrolled in other classes for {label}: {', '.join(others)}" if others else ""
                not_continuing.append(row(e, CATEGORY_NOT_CONTINUING, notes))
        for e in entry.to_block:
            current.append(row(e, CATEGORY_ALL, ""))

    def by_class(r: EnrollmentAnalysisRow) -> tuple[str, str]:
        return (r.class_name, r.name)

    return BlockEnrollmentAnalysis(
        term=term,
        from_block=from_block,
        to_block=to_block,
        customers_analyzed=analyzed,
        continuing=sorted(continuing, key=by_class),
        not_continuing=sorted(not_continuing, key=by_class),
        current=sorted(current, key=by_class),
    )


def export_report_csv(frame: pd.DataFrame, path: Path, header_lines: Iterable[str] = ()) -> Path:
    """Write optional free-text header lines followed by `frame` as CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    header = list(header_lines)
    with path.open("w", encoding="utf-8", newline="") as f:
        if header:
            f.write("\n".join(header) + "\n")
        frame.to_csv(f, index=False)
    return path


def export_enrollment_csv(analysis: BlockEnrollmentAnalysis, path: Path) -> Path:
    """Write the summary header followed by the analysis rows as CSV."""
    return export_report_csv(analysis.to_dataframe(), path, analysis.summary_lines())


def revenue_by_class(orders: Iterable[RawOrder], scope: TermScope | None = None) -> dict[str, Decimal]:
    """Net revenue per class type for paid orders, discounts spread proportionally.

    Bundles are reported as their own line; they are not split across the
    classes they include.
    """
    scope = scope or TermScope()
    revenue: dict[str, Decimal] = {}
    for order in orders:
        if not order.is_paid:
            continue
        for class_name in LEVEL_CLASSES + SOLO_CLASSES + (ClassName.BUNDLE,):
            matches = classified_as(class_name)

            def in_scope(item, matches=matches) -> bool:
                return matches(item) and scope.admits(classify(item.title, item.variant_title))

            amount = allocate_filtered_total(order, in_scope)
            if amount.filtered_items_value:
                revenue[class_name.value] = revenue.get(class_name.value, Decimal("0")) + amount.filtered_total
    return revenue


def _term_key(result: ClassificationResult) -> str | None:
    """Report key: "Term 2a", "Term 2b", or "Term 2" for whole-term purchases."""
    if result.term is None:
        return None
    suffix = result.block.value.lower() if result.block in (Block.A, Block.B) else ""
    return f"Term {result.term}{suffix}"


def _class_result(item: RawLineItem, scope: TermScope | None) -> ClassificationResult | None:
    """Classification of a paid class item, or None for free, unknown or out-of-scope items."""
    result = classify(item.title, item.variant_title)
    if result.is_free or not result.is_known:
        return None
    if scope is not None and not scope.admits(result):
        return None
    return result


def revenue_by_term(orders: Iterable[RawOrder], scope: TermScope | None = None) -> dict[str, Decimal]:
    """Net revenue per term and block for paid orders, discounts spread proportionally."""

    def key_of(item: RawLineItem) -> str | None:
        result = _class_result(item, scope)
        return _term_key(result) if result else None

    revenue: dict[str, Decimal] = {}
    for order in orders:
        if not order.is_paid:
            continue
        keys = {key_of(item) for item in order.line_items} - {None}
        for key in sorted(keys):
            amount = allocate_filtered_total(order, lambda item, key=key: key_of(item) == key)
            revenue[key] = revenue.get(key, Decimal("0")) + amount.filtered_total
    return dict(sorted(revenue.items()))


@dataclass
class ClassPopularityRow:
    class_name: str
    count: int = 0
    revenue: Decimal = Decimal("0")
    by_role: dict[str, int] = field(default_factory=lambda: {r.value: 0 for r in ROLE_COLUMNS})
    by_term: dict[str, int] = field(default_factory=dict)
    percentage: float = 0.0


@dataclass(frozen=True)
class ClassPopularity:
    total_enrollments: int
    classes: list[ClassPopularityRow]  # most popular first
    role_distribution: dict[str, int]

    @property
    def most_popular(self) -> str | None:
        return self.classes[0].class_name if self.classes else None

    @property
    def least_popular(self) -> str | None:
        return self.classes[-1].class_name if self.classes else None

    def to_dataframe(self) -> pd.DataFrame:
        roles = [r.value for r in ROLE_COLUMNS]
        terms = sorted({t for row in self.classes for t in row.by_term})
        columns = ["Class", "Enrollments", "Revenue", "Share", *roles, *terms]
        records = []
        for row in self.classes:
            rec: dict[str, object] = {
                "Class": row.class_name,
                "Enrollments": row.count,
                "Revenue": f"{row.revenue:.2f}",
                "Share": f"{row.percentage:.1f}%",
            }
            rec.update(row.by_role)
            rec.update({t: row.by_term.get(t, 0) for t in terms})
            records.append(rec)
        return pd.DataFrame(records, columns=columns)


def class_popularity(orders: Iterable[RawOrder], scope: TermScope | None = None) -> ClassPopularity:
    """Enrollments per class for paid orders, split by role and by term/block.

    Counts are item quantities. Bundles are left out so a bundle is not
    counted five times; free classes belong to the conversion report.
    """
    stats: dict[str, ClassPopularityRow] = {}
    roles = {r.value: 0 for r in ROLE_COLUMNS}
    total = 0
    for order in orders:
        if not order.is_paid:
            continue
        for item in order.line_items:
            result = _class_result(item, scope)
            if result is None or result.is_bundle:
                continue
            name = result.class_name.value
            row = stats.setdefault(name, ClassPopularityRow(name))
            row.count += item.quantity
            row.revenue += item.value
            if result.role in ROLE_COLUMNS:
                row.by_role[result.role.value] += item.quantity
                roles[result.role.value] += item.quantity
            key = _term_key(result)
            if key:
                row.by_term[key] = row.by_term.get(key, 0) + item.quantity
            total += item.quantity

    ranked = sorted(stats.values(), key=lambda r: (-r.count, r.class_name))
    for row in ranked:
        row.percentage = 100.0 * row.count / total if total else 0.0
    return ClassPopularity(total_enrollments=total, classes=ranked, role_distribution=roles)


@dataclass(frozen=True)
class ConversionRow:
    customer_id: int
    name: str
    free_class_date: date  # order date of the first free class
    first_paid_date: date | None
    days_to_convert: int | None

    @property
    def converted(self) -> bool:
        return self.first_paid_date is not None


@dataclass
class _Journey:
    customer_id: int
    name: str
    free_at: datetime | None = None
    paid_at: datetime | None = None


@dataclass(frozen=True)
class FreeClassConversion:
    rows: list[ConversionRow]

    @property
    def converted(self) -> list[ConversionRow]:
        return [r for r in self.rows if r.converted]

    @property
    def not_converted(self) -> list[ConversionRow]:
        return [r for r in self.rows if not r.converted]

    @property
    def conversion_rate(self) -> float:
        """Percentage of free-class customers who went on to a paid class."""
        return 100.0 * len(self.converted) / len(self.rows) if self.rows else 0.0

    @property
    def average_days_to_convert(self) -> float | None:
        days = [r.days_to_convert for r in self.converted if r.days_to_convert is not None]
        return sum(days) / len(days) if days else None

    @property
    def timeline(self) -> dict[str, int]:
        out = {name: 0 for name, _ in CONVERSION_BUCKETS}
        out["over_month"] = 0
        for r in self.converted:
            for name, limit in CONVERSION_BUCKETS:
                if r.days_to_convert <= limit:
                    out[name] += 1
                    break
            else:
                out["over_month"] += 1
        return out

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "Customer ID": r.customer_id,
                    "Name": r.name,
                    "Free Class Order Date": r.free_class_date.isoformat(),
                    "First Paid Date": r.first_paid_date.isoformat() if r.first_paid_date else "",
                    "Days to Convert": "" if r.days_to_convert is None else r.days_to_convert,
                    "Converted": "Yes" if r.converted else "No",
                }
                for r in self.rows
            ],
            columns=["Customer ID", "Name", "Free Class Order Date", "First Paid Date", "Days to Convert", "Converted"],
        )


def free_class_conversion(
    orders: Iterable[RawOrder],
    customers: Mapping[int, Customer] | None = None,
) -> FreeClassConversion:
    """Track customers from their first free class to their first paid class order.

    Only paid orders placed at or after the first free class count as a
    conversion; customers who were already enrolled before their free class
    show as not converted until they buy again.
    """
    customers = customers or {}
    journeys: dict[int, _Journey] = {}
    for order in sorted(orders, key=lambda o: o.created_at):
        if order.customer_id is None:
            continue
        results = [classify(i.title, i.variant_title) for i in order.line_items]
        journey = journeys.get(order.customer_id)
        if journey is None:
            known = customers.get(order.customer_id)
            name = known.display_name if known else (order.customer_name or f"Customer {order.customer_id}")
            journey = journeys[order.customer_id] = _Journey(order.customer_id, name)
        if journey.free_at is None and any(r.is_free for r in results):
            journey.free_at = order.created_at
        if (
            journey.free_at is not None
            and journey.paid_at is None
            and order.is_paid
            and any(r.is_known and not r.is_free for r in results)
        ):
            journey.paid_at = order.created_at

    rows = [
        ConversionRow(
            customer_id=j.customer_id,
            name=j.name,
            free_class_date=j.free_at.date(),
            first_paid_date=j.paid_at.date() if j.paid_at else None,
            days_to_convert=(j.paid_at - j.free_at).days if j.paid_at else None,
        )
        for j in journeys.values()
        if j.free_at is not None
    ]
    rows.sort(key=lambda r: (r.free_class_date, r.name))
    return FreeClassConversion(rows=rows)


@dataclass(frozen=True)
class TimingRow:
    order_id: int
    order_number: str | None
    customer_id: int | None
    customer_name: str
    class_name: str
    role: str
    order_date: date
    days_before_class: int

    @property
    def is_day_of(self) -> bool:
        return self.days_before_class == 0


@dataclass(frozen=True)
class EnrollmentTiming:
    term: str
    block: Block
    class_start: date
    rows: list[TimingRow]

    @property
    def early(self) -> list[TimingRow]:
        return [r for r in self.rows if not r.is_day_of]

    @property
    def day_of(self) -> list[TimingRow]:
        return [r for r in self.rows if r.is_day_of]

    def by_level(self) -> dict[str, dict[str, int]]:
        out = {c.value: {"early": 0, "day_of": 0} for c in LEVEL_CLASSES}
        for r in self.rows:
            out[r.class_name]["day_of" if r.is_day_of else "early"] += 1
        return out

    def by_day(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for r in self.rows:
            day = r.order_date.isoformat()
            out[day] = out.get(day, 0) + 1
        return dict(sorted(out.items()))

    def role_breakdown(self) -> dict[str, dict[str, int]]:
        out = {"early": {"Leader": 0, "Follower": 0}, "day_of": {"Leader": 0, "Follower": 0}}
        for r in self.rows:
            if r.role in out["early"]:
                out["day_of" if r.is_day_of else "early"][r.role] += 1
        return out

    @property
    def most_popular_day(self) -> tuple[str, int] | None:
        days = self.by_day()
        if not days:
            return None
        best = max(days.values())
        # by_day is date-ordered, so the earliest day wins a tie
        return next((day, n) for day, n in days.items() if n == best)

    @property
    def average_days_early(self) -> float | None:
        early = self.early
        return sum(r.days_before_class for r in early) / len(early) if early else None

    @property
    def percent_day_of(self) -> float:
        return 100.0 * len(self.day_of) / len(self.rows) if self.rows else 0.0

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "Order ID": r.order_id,
                    "Order Number": r.order_number or "",
                    "Customer ID": r.customer_id,
                    "Name": r.customer_name,
                    "Class": r.class_name,
                    "Role": r.role,
                    "Order Date": r.order_date.isoformat(),
                    "Days Before Class": r.days_before_class,
                    "Day Of": "Yes" if r.is_day_of else "No",
                }
                for r in self.rows
            ],
            columns=[
                "Order ID", "Order Number", "Customer ID", "Name", "Class",
                "Role", "Order Date", "Days Before Class", "Day Of",
            ],
        )


def enrollment_timing(
    orders: Iterable[RawOrder],
    *,
    term: str,
    class_start: date,
    block: Block = Block.B,
    early_start: date | None = None,
) -> EnrollmentTiming:
    """Level-class signups for one block, dated relative to the block's first class.

    Only paid orders dated from `early_start` (default three weeks before)
    through `class_start` count, and only items sold for exactly that block;
    whole-term purchases were made before the term began.
    """
    early_start = early_start or class_start - timedelta(days=DEFAULT_EARLY_WINDOW_DAYS)
    rows: list[TimingRow] = []
    for order in orders:
        if not order.is_paid:
            continue
        order_date = order.created_at.date()
        if not early_start <= order_date <= class_start:
            continue
        for item in order.line_items:
            result = classify(item.title, item.variant_title)
            if not result.is_level or result.term != term or result.block is not block:
                continue
            rows.append(
                TimingRow(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    customer_name=order.customer_name,
                    class_name=result.class_name.value,
                    role=result.role.column_value,
                    order_date=order_date,
                    days_before_class=(class_start - order_date).days,
                )
            )
    rows.sort(key=lambda r: (r.order_date, r.order_id))
    return EnrollmentTiming(term=term, block=block, class_start=class_start, rows=rows)


def revenue_dataframe(revenue: Mapping[str, Decimal], key_column: str) -> pd.DataFrame:
    return pd.DataFrame(
        [{key_column: key, "Revenue": f"{amount:.2f}"} for key, amount in revenue.items()],
        columns=[key_column, "Revenue"],
    )
