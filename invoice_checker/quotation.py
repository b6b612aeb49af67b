"""
Quotation workbook: price index, country column map and SKU display names.

The quotation sheet is a matrix keyed by SKU and quantity with one
``Total to <CC>`` / ``Upsell to <CC>`` column pair per destination. Headers
often contain line breaks, so they are whitespace-collapsed before matching but
the original header text is kept as the key used to read price rows.
"""

from __future__ import annotations

import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from invoice_checker.canonical import (
    find_column,
    is_blank,
    norm_text,
    normalize_sku_base,
    parse_price,
    parse_quantity,
)
from invoice_checker.config import BASE_COUNTRY_COLUMNS, QUANTITY_TIER_RANGE, ReconConfig
from invoice_checker.workbook import CanonicalRow, Workbook

COUNTRY_HEADER_RE = re.compile(r"^(total|upsell)\s+to\s+(.+)$", re.IGNORECASE)
PLAIN_CODE_RE = re.compile(r"^([A-Z]{2})\b", re.IGNORECASE)

SKU_COLUMNS = ("SKU", "Sku")
QTY_COLUMNS = ("QTY", "Quantity")
NAME_COLUMNS = ("Item name", "Item Name", "Item", "Name")

PriceIndex = dict[str, dict[int, Mapping[str, Any]]]


@dataclass(frozen=True)
class CountryColumns:
    total: str
    upsell: str


@dataclass
class PriceBook:
    default: PriceIndex = field(default_factory=dict)
    tiers: PriceIndex = field(default_factory=dict)
    country_columns: dict[str, CountryColumns] = field(default_factory=dict)
    sku_names: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def price_row(self, sku_base: str, quantity: int) -> Mapping[str, Any] | None:
        low, high = QUANTITY_TIER_RANGE
        if low <= quantity <= high:
            row = self.tiers.get(sku_base, {}).get(quantity)
            if row is not None:
                return row
        return self.default.get(sku_base, {}).get(quantity)

    def columns_for(self, country: str) -> CountryColumns | None:
        wanted = norm_text(country)
        if not wanted:
            return None
        if wanted in self.country_columns:
            return self.country_columns[wanted]
        lowered = wanted.lower()
        for code, columns in self.country_columns.items():
            if code.lower() == lowered:
                return columns
        return None


# ══════════════════════════════════════════════════════════════════════════════
# COUNTRY COLUMNS
# ══════════════════════════════════════════════════════════════════════════════

def baseline_country_columns() -> dict[str, CountryColumns]:
    return {code: CountryColumns(total, upsell) for code, (total, upsell) in BASE_COUNTRY_COLUMNS.items()}


def _scan_country_headers(headers: Iterable[str]) -> tuple[dict[str, dict[str, str]], list[str]]:
    """Key headers by their two-letter code; a later header for the same code and kind wins."""
    found: dict[str, dict[str, str]] = {}
    warnings: list[str] = []
    for header in headers:
        original = str(header or "")
        match = COUNTRY_HEADER_RE.match(norm_text(original))
        if not match:
            continue
        label = match.group(2).strip()
        code_match = PLAIN_CODE_RE.match(label)
        if not code_match:
            continue
        kind = match.group(1).lower()
        code = code_match.group(1).upper()
        kinds = found.setdefault(code, {})
        previous = kinds.get(kind)
        if label.upper() != code:
            message = f"Quotation header '{norm_text(original)}' is read as {code}"
            if previous is not None:
                message += f" and replaces '{norm_text(previous)}'"
            warnings.append(message)
        elif previous is not None and norm_text(previous).upper() != norm_text(original).upper():
            warnings.append(f"Quotation header '{norm_text(original)}' replaces '{norm_text(previous)}' for {code}")
        kinds[kind] = original
    return found, warnings


def derive_country_columns(headers: Iterable[str]) -> dict[str, CountryColumns]:
    """Discover ``Total to XX`` / ``Upsell to XX`` headers, keeping their exact text."""
    found, _ = _scan_country_headers(headers)
    return {
        code: CountryColumns(
            total=kinds.get("total") or f"Total to {code}",
            upsell=kinds.get("upsell") or f"Upsell to {code}",
        )
        for code, kinds in found.items()
    }


def country_header_warnings(headers: Iterable[str]) -> list[str]:
    """Headers whose label only starts with a country code, such as ``Total to GB-remote area``."""
    _, warnings = _scan_country_headers(headers)
    return warnings


def merge_country_columns(discovered: Mapping[str, CountryColumns]) -> dict[str, CountryColumns]:
    merged = baseline_country_columns()
    merged.update(discovered)
    return merged


def country_column_warnings(
    columns: Mapping[str, CountryColumns],
    codes: Iterable[str] | None = None,
) -> list[str]:
    """Report country codes that read another destination's quotation column."""
    owners: dict[str, list[str]] = defaultdict(list)
    for code, pair in columns.items():
        owners[norm_text(pair.total)].append(code)
        owners[norm_text(pair.upsell)].append(code)

    wanted = None if codes is None else {norm_text(code).lower() for code in codes}
    warnings = []
    for code, pair in columns.items():
        if wanted is not None and code.lower() not in wanted:
            continue
        for column in (pair.total, pair.upsell):
            shared = sorted(other for other in owners[norm_text(column)] if other != code)
            if shared:
                warnings.append(
                    f"Quotation column '{norm_text(column)}' used for {code} is shared with {', '.join(shared)}"
                )
    return warnings


# ══════════════════════════════════════════════════════════════════════════════
# PRICE INDEX
# ══════════════════════════════════════════════════════════════════════════════

def _quantity_key(value) -> int:
    if is_blank(value):
        return 1
    quantity = parse_quantity(value)
    if quantity <= 0 or not float(quantity).is_integer():
        return 0
    return int(quantity)


def build_price_index(rows: Iterable[CanonicalRow]) -> PriceIndex:
    index: PriceIndex = {}
    for row in rows:
        sku_raw = row.get(find_column(row.headers, SKU_COLUMNS))
        if is_blank(sku_raw) or sku_raw == 0:
            continue
        quantity = _quantity_key(row.get(find_column(row.headers, QTY_COLUMNS)))
        sku_base = normalize_sku_base(sku_raw)
        if not sku_base or not quantity:
            continue
        index.setdefault(sku_base, {})[quantity] = row.values
    return index


def build_sku_names(rows: Iterable[CanonicalRow]) -> dict[str, str]:
    names: dict[str, str] = {}
    for row in rows:
        sku_raw = row.get(find_column(row.headers, SKU_COLUMNS))
        if is_blank(sku_raw):
            continue
        sku_base = normalize_sku_base(sku_raw)
        name = ""
        for candidate in NAME_COLUMNS:
            value = row.get(find_column(row.headers, (candidate,)))
            if not is_blank(value):
                name = str(value).strip()
                break
        if name and sku_base not in names:
            names[sku_base] = name
    return names


def build_price_book(book: Workbook, config: ReconConfig | None = None) -> PriceBook:
    config = config or ReconConfig()
    default_sheet = book.sheet(config.quotation_sheet) or (book.sheets[0] if book.sheets else None)
    tier_sheet = book.sheet(config.tier_sheet)
    if tier_sheet is default_sheet:
        tier_sheet = None

    default_rows = default_sheet.rows if default_sheet else []
    tier_rows = tier_sheet.rows if tier_sheet else []

    headers: list[str] = []
    for sheet in (default_sheet, tier_sheet):
        if sheet is None:
            continue
        for header in sheet.layout.headers:
            if header not in headers:
                headers.append(header)

    sku_names = build_sku_names(default_rows)
    for sku_base, name in build_sku_names(tier_rows).items():
        sku_names.setdefault(sku_base, name)

    warnings = list(book.warnings)
    if default_sheet is None:
        warnings.append(f"Quotation workbook {book.source} has no readable sheets")
    warnings.extend(country_header_warnings(headers))

    return PriceBook(
        default=build_price_index(default_rows),
        tiers=build_price_index(tier_rows),
        country_columns=merge_country_columns(derive_country_columns(headers)),
        sku_names=sku_names,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# PRICE-LIST CHECK
# ══════════════════════════════════════════════════════════════════════════════

def quote_order(rows: Sequence[CanonicalRow], book: PriceBook, country: str) -> tuple[float, list[str]]:
    """Sum quotation prices for an order's SKUs; notes explain anything unpriced."""
    columns = book.columns_for(country)
    if columns is None:
        return math.nan, [f"no quotation columns for country '{country or '[blank]'}'"]

    grouped: dict[str, dict[str, float]] = {}
    for row in rows:
        sku_base = normalize_sku_base(row.value("item", ""))
        quantity = parse_quantity(row.value("quantity"))
        if not sku_base or quantity <= 0:
            continue
        bucket = grouped.setdefault(sku_base, {"qty": 0.0, "cost": 0.0, "upsell": 0.0})
        bucket["qty"] += quantity
        bucket["cost"] += max(parse_quantity(row.value("cost")), 0.0)
        bucket["upsell"] += max(parse_quantity(row.value("upsell")), 0.0)

    quoted = 0.0
    notes = []
    for sku_base, bucket in grouped.items():
        quantity = bucket["qty"]
        if not float(quantity).is_integer():
            notes.append(f"fractional quantity {quantity} for {sku_base}")
            continue
        price_row = book.price_row(sku_base, int(quantity))
        if price_row is None:
            notes.append(f"no quotation price for {sku_base} x{int(quantity)}")
            continue
        if bucket["cost"] > 0 and bucket["upsell"] == 0:
            column = columns.total
        elif bucket["cost"] == 0 and bucket["upsell"] > 0:
            column = columns.upsell
        elif bucket["cost"] > 0:
            notes.append(f"{sku_base} has both cost and upsell amounts")
            continue
        else:
            notes.append(f"{sku_base} has no cost or upsell amount")
            continue
        price = parse_price(price_row.get(column))
        if math.isnan(price):
            notes.append(f"blank '{norm_text(column)}' price for {sku_base} x{int(quantity)}")
            continue
        quoted += price
    return quoted, notes
