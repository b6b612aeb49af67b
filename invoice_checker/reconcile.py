"""
Total reconciler: expected vs. reported order totals.

The ledger's Total column is either the order total repeated on every row or a
per-line amount. When the collected values disagree, both readings are tried
and the one closer to the expected total is reported.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Sequence

from invoice_checker.canonical import format_quantity, norm_text, parse_price
from invoice_checker.config import AMOUNT_TOLERANCE, TOTAL_COLUMNS
from invoice_checker.errors import MissingColumnError
from invoice_checker.grouping import OrderGroup
from invoice_checker.workbook import CanonicalRow

STATUS_OK = "ok"
STATUS_MISMATCH = "mismatch"

AMBIGUOUS_TOTAL_RULE = "ambiguous_total"


@dataclass(frozen=True)
class TotalCheck:
    base_total: float
    upsell_total: float
    expected_total: float
    reported_total: float
    difference: float
    status: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconciliationResult:
    order: str
    order_key: str
    store: str
    country: str
    base_total: float
    upsell_total: float
    expected_total: float
    reported_total: float
    difference: float
    status: str
    items_compared: int
    match_status: str
    quoted_total: float = math.nan
    pricing_detail: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_mismatch(self) -> bool:
        return self.status == STATUS_MISMATCH

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, float) and not math.isfinite(value):
                payload[key] = None
            elif isinstance(value, tuple):
                payload[key] = list(value)
        return payload


def _positive(value) -> float:
    amount = parse_price(value)
    return amount if not math.isnan(amount) and amount > 0 else 0.0


def expected_totals(rows: Iterable[CanonicalRow]) -> tuple[float, float]:
    """Sum positive Cost and Upsell amounts per physical row; absent columns add nothing."""
    base = 0.0
    upsell = 0.0
    for row in rows:
        base += _positive(row.value("cost"))
        upsell += _positive(row.value("upsell"))
    return base, upsell


def reported_values(rows: Iterable[CanonicalRow]) -> list[float]:
    values = []
    for row in rows:
        amount = parse_price(row.value("total"))
        if not math.isnan(amount) and amount > 0:
            values.append(amount)
    return values


def missing_column_warnings(rows: Sequence[CanonicalRow]) -> list[str]:
    """One warning per sheet and column for rows that cannot contribute an amount."""
    warnings = []
    seen: set[tuple[str, str]] = set()
    for row in rows:
        for role in TOTAL_COLUMNS:
            try:
                row.require(role)
            except MissingColumnError as exc:
                if (row.sheet, exc.column) in seen:
                    continue
                seen.add((row.sheet, exc.column))
                warnings.append(f"{exc}; those rows add nothing to the order's {exc.column}")
    return warnings


def resolve_reported_total(values: Sequence[float], expected: float) -> float:
    """
    Pick the reported total from the non-zero Total cells of one order.

    Candidates are tried in order: the sum, the max, then each distinct cell
    value ascending. The candidate closest to ``expected`` wins and ties keep
    the earlier candidate, so the sum is preferred whenever it is as close.
    """
    if not values:
        return math.nan
    distinct = sorted({round(value, 6) for value in values})
    if len(distinct) == 1:
        return distinct[0]
    total = sum(values)
    if math.isnan(expected):
        return total

    best = total
    best_gap = abs(total - expected)
    for candidate in [max(values), *distinct]:
        gap = abs(candidate - expected)
        if gap < best_gap:
            best, best_gap = candidate, gap
    return best


def _amount(value: float) -> str:
    return format_quantity(round(value, 2))


def classify(difference: float, tolerance: float = AMOUNT_TOLERANCE) -> str:
    if math.isnan(difference) or abs(difference) <= tolerance:
        return STATUS_OK
    return STATUS_MISMATCH


def reconcile_totals(group: OrderGroup, tolerance: float = AMOUNT_TOLERANCE) -> TotalCheck:
    """Check one order. Raises MissingColumnError only when no row has a Total column."""
    if not any(row.column("total") for row in group.rows):
        group.rows[0].require("total")

    warnings = missing_column_warnings(group.rows)
    base, upsell = expected_totals(group.rows)
    expected = base + upsell
    values = reported_values(group.rows)
    reported = resolve_reported_total(values, expected)
    disagree = len({round(value, 6) for value in values}) > 1
    if disagree and not math.isnan(reported) and not math.isclose(reported, sum(values)):
        cells = ", ".join(_amount(value) for value in values)
        warnings.append(
            f"Total cells disagree ({cells}); reported {_amount(reported)} as closest to the expected total "
            f"[{AMBIGUOUS_TOTAL_RULE}]"
        )
    difference = reported - expected
    return TotalCheck(
        base_total=base,
        upsell_total=upsell,
        expected_total=expected,
        reported_total=reported,
        difference=difference,
        status=classify(difference, tolerance),
        warnings=tuple(warnings),
    )


def order_country(rows: Iterable[CanonicalRow]) -> str:
    for row in rows:
        country = norm_text(row.value("country"))
        if country:
            return country
    return ""


@dataclass
class ResultDraft:
    """Mutable accumulator the pipeline fills before freezing a result."""

    group: OrderGroup
    totals: TotalCheck
    store: str = ""
    items_compared: int = 0
    match_status: str = ""
    quoted_total: float = math.nan
    pricing_detail: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def freeze(self) -> ReconciliationResult:
        totals = self.totals
        return ReconciliationResult(
            order=self.group.label,
            order_key=self.group.key,
            store=self.store,
            country=order_country(self.group.rows),
            base_total=totals.base_total,
            upsell_total=totals.upsell_total,
            expected_total=totals.expected_total,
            reported_total=totals.reported_total,
            difference=totals.difference,
            status=totals.status,
            items_compared=self.items_compared,
            match_status=self.match_status,
            quoted_total=self.quoted_total,
            pricing_detail=tuple(self.pricing_detail),
            warnings=tuple(self.warnings),
        )
