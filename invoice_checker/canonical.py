"""
Canonicalization helpers for SKUs, product names, order numbers and amounts.

Everything here is pure and total: bad input yields an empty string, zero or
NaN rather than an exception, so matching stays reproducible on messy sheets.

Examples:
    normalize_sku_base("ce001-black/L")             → "CE001"
    canonical_product_name("Café™ Leggings – Sculpt") → "cafe legging"
    canonical_product_name("Cafe Sleeves")            → "cafe sleeve"
    order_key("#BM-10423")                          → "10423"
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Iterable

SKU_SPLIT_RE = re.compile(r"[\s\-/_]")
SKU_BASE_RE = re.compile(r"^([A-Za-z]+)(\d+)([A-Za-z])?$")
DIGITS_RE = re.compile(r"\d+")
TAGLINE_SPLIT_RE = re.compile(r"\s-\s")
TRADEMARK_RE = re.compile(r"[™®©]")
LONG_DASH_RE = re.compile(r"[–—]")

PRICE_PREFIXES = ("US$", "$", "€", "EUR")

# Plural → singular forms seen between ledger item names and shop titles.
PLURAL_FORMS = (
    (re.compile(r"\bleggings\b", re.IGNORECASE), "legging"),
    (re.compile(r"\bsleeves\b", re.IGNORECASE), "sleeve"),
)


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def text(value) -> str:
    if is_blank(value):
        return ""
    return str(value)


def norm_text(value) -> str:
    return " ".join(text(value).split())


def normalize_sku_base(raw) -> str:
    """Collapse a variant SKU (``CE001-BLACK/L``) to its base product code."""
    first = SKU_SPLIT_RE.split(text(raw).strip())[0]
    match = SKU_BASE_RE.match(first)
    if not match:
        return first.upper()
    letters, digits, suffix = match.groups()
    return f"{letters}{digits}{suffix or ''}".upper()


def strip_marks(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def canonical_product_name(raw) -> str:
    """Reduce a product title to the base name used for signature comparison."""
    name = strip_marks(norm_text(raw))
    name = TRADEMARK_RE.sub("", name)
    name = LONG_DASH_RE.sub("-", name).strip()
    name = TAGLINE_SPLIT_RE.split(name, maxsplit=1)[0].strip()
    for pattern, singular in PLURAL_FORMS:
        name = pattern.sub(singular, name)
    return " ".join(name.split()).lower()


def order_key(value) -> str:
    match = DIGITS_RE.search(text(value))
    return match.group(0) if match else ""


def parse_price(value) -> float:
    """Read a money cell; blanks and unparseable text become NaN."""
    if isinstance(value, bool) or is_blank(value):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    raw = str(value).strip()
    for prefix in PRICE_PREFIXES:
        if raw.startswith(prefix):
            raw = raw[len(prefix):].strip()
    try:
        return float(raw)
    except ValueError:
        return math.nan


def parse_quantity(value) -> float:
    amount = parse_price(value)
    return 0.0 if math.isnan(amount) else amount


def format_quantity(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def find_column(columns: Iterable[str], candidates: Iterable[str]) -> str | None:
    """Return the first header matching a candidate name, ignoring case and spacing."""
    lookup: dict[str, str] = {}
    for column in columns:
        lookup.setdefault(norm_text(column).lower(), column)
    for candidate in candidates:
        found = lookup.get(norm_text(candidate).lower())
        if found is not None:
            return found
    return None
