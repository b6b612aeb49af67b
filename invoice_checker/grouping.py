"""Group ledger rows by order number and drop exact duplicate row copies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from invoice_checker.canonical import find_column, norm_text, order_key
from invoice_checker.config import DEDUPE_COLUMNS
from invoice_checker.errors import MissingColumnError
from invoice_checker.workbook import CanonicalRow

DUPLICATE_ROWS_RULE = "duplicate_rows"


@dataclass
class OrderGroup:
    key: str
    label: str
    rows: list[CanonicalRow] = field(default_factory=list)


@dataclass
class Grouping:
    groups: dict[str, OrderGroup]
    duplicates_removed: int = 0
    rows_without_order: int = 0
    warnings: list[str] = field(default_factory=list)


def dedupe_key(row: CanonicalRow) -> str:
    parts = []
    for name in DEDUPE_COLUMNS:
        column = find_column(row.headers, (name,))
        parts.append(norm_text(row.get(column, "")))
    return "||".join(parts)


def group_by_order(rows: Iterable[CanonicalRow]) -> Grouping:
    """Order-preserving: groups appear in first-seen order, first row copy wins."""
    groups: dict[str, OrderGroup] = {}
    seen: dict[str, set[str]] = {}
    grouping = Grouping(groups=groups)
    sheets_without_order: list[str] = []

    for row in rows:
        try:
            column = row.require("order")
        except MissingColumnError as exc:
            if row.sheet not in sheets_without_order:
                sheets_without_order.append(row.sheet)
                grouping.warnings.append(f"{exc}; rows skipped")
            continue

        raw = row.get(column)
        key = order_key(raw)
        if not key:
            grouping.rows_without_order += 1
            continue

        fingerprint = dedupe_key(row)
        keys = seen.setdefault(key, set())
        if fingerprint in keys:
            grouping.duplicates_removed += 1
            continue
        keys.add(fingerprint)

        group = groups.get(key)
        if group is None:
            group = groups[key] = OrderGroup(key=key, label=norm_text(raw))
        group.rows.append(row)

    if grouping.duplicates_removed:
        grouping.warnings.append(
            f"{grouping.duplicates_removed} duplicate ledger row(s) counted once [{DUPLICATE_ROWS_RULE}]"
        )
    return grouping
