"""
Cross-source matcher: ledger rows vs. remote order line items.

Both sides are reduced to a signature, a sorted list of
``"<canonical name>||<summed quantity>"`` strings, and compared for equality.
Ledger items go SKU → SKU base → quotation display name → canonical name;
remote items go title → canonical name.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from invoice_checker.canonical import (
    canonical_product_name,
    format_quantity,
    norm_text,
    normalize_sku_base,
    order_key,
    parse_quantity,
)
from invoice_checker.config import (
    ROUTED_BRANDS,
    ROUTED_FAMILY,
    ROUTED_FAMILY_MARKERS,
    STORE_ROUTING,
)
from invoice_checker.workbook import CanonicalRow

MATCH = "match"
MISMATCH = "mismatch"
NOT_FOUND = "not-found"
SOURCE_ERROR = "source-error"

MATCH_STATUSES = (MATCH, MISMATCH, NOT_FOUND, SOURCE_ERROR)

DIGITAL_MARKERS = ("e-book", "ebook")
FULFILLED = "FULFILLED"

PAREN_CODE_RE = re.compile(r"\(([A-Z]{2})\)")
CODE_RE = re.compile(r"^[A-Z]{2}$")


# ══════════════════════════════════════════════════════════════════════════════
# REMOTE LINE ITEMS
# ══════════════════════════════════════════════════════════════════════════════

def line_items_of(order: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Line items as plain dicts, from a list or a GraphQL connection."""
    raw = order.get("lineItems") or []
    if isinstance(raw, Mapping):
        raw = [edge.get("node") for edge in raw.get("edges") or [] if isinstance(edge, Mapping)]
    return [item for item in raw if isinstance(item, Mapping)]


def line_item_quantity(item: Mapping[str, Any]) -> float:
    quantity = item.get("currentQuantity")
    if quantity is None:
        quantity = item.get("quantity")
    return parse_quantity(quantity)


def should_keep_line_item(item: Mapping[str, Any] | None) -> bool:
    """Drop digital add-ons, zero quantities and lines removed before fulfillment."""
    if not item:
        return False
    title = norm_text(item.get("title")).lower()
    if not title:
        return False
    if any(marker in title for marker in DIGITAL_MARKERS):
        return False
    if line_item_quantity(item) <= 0:
        return False

    fulfillable = item.get("fulfillableQuantity")
    status = item.get("fulfillmentStatus")
    if fulfillable is None and status is None:
        return True
    return str(status or "").upper() == FULFILLED or parse_quantity(fulfillable) > 0


# ══════════════════════════════════════════════════════════════════════════════
# SIGNATURES
# ══════════════════════════════════════════════════════════════════════════════

def render_signature(counts: Mapping[str, float]) -> list[str]:
    return sorted(f"{name}||{format_quantity(quantity)}" for name, quantity in counts.items())


def ledger_signature(rows: Iterable[CanonicalRow], sku_names: Mapping[str, str] | None = None) -> list[str]:
    sku_names = sku_names or {}
    counts: dict[str, float] = {}
    for row in rows:
        quantity_column = row.column("quantity")
        item_column = row.column("item")
        if quantity_column is None or item_column is None:
            continue
        quantity = parse_quantity(row.get(quantity_column))
        if quantity <= 0:
            continue
        raw = norm_text(row.get(item_column))
        if not raw:
            continue
        sku_base = normalize_sku_base(raw)
        name = canonical_product_name(sku_names.get(sku_base) or sku_base)
        counts[name] = counts.get(name, 0.0) + quantity
    return render_signature(counts)


def remote_signature(order: Mapping[str, Any]) -> list[str]:
    counts: dict[str, float] = {}
    for item in line_items_of(order):
        if not should_keep_line_item(item):
            continue
        name = canonical_product_name(item.get("title"))
        counts[name] = counts.get(name, 0.0) + line_item_quantity(item)
    return render_signature(counts)


# ══════════════════════════════════════════════════════════════════════════════
# CATALOG
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class RemoteCatalog:
    """Already-fetched remote orders per store, indexed by order number digits."""

    orders: dict[str, dict[str, Mapping[str, Any]]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    def add_orders(self, store: str, orders: Iterable[Mapping[str, Any]]) -> int:
        index = self.orders.setdefault(store, {})
        added = 0
        for order in orders:
            key = order_key(order.get("name"))
            if key and key not in index:
                index[key] = order
                added += 1
        return added

    def add_failure(self, store: str, message: str) -> None:
        self.failures[store] = message

    @property
    def stores(self) -> list[str]:
        return sorted(set(self.orders) | set(self.failures))

    def lookup(self, store: str, key: str) -> tuple[str | None, Mapping[str, Any] | None]:
        """``(SOURCE_ERROR, None)``, ``(NOT_FOUND, None)`` or ``(None, order)``."""
        if store in self.failures or store not in self.orders:
            return SOURCE_ERROR, None
        order = self.orders[store].get(key)
        if order is None:
            return NOT_FOUND, None
        return None, order


@dataclass(frozen=True)
class MatchOutcome:
    status: str
    items_compared: int = 0
    ledger: tuple[str, ...] = ()
    remote: tuple[str, ...] = ()


def compare_signatures(ledger: Sequence[str], remote: Sequence[str]) -> str:
    return MATCH if list(ledger) == list(remote) else MISMATCH


def match_order(
    rows: Sequence[CanonicalRow],
    key: str,
    store: str,
    catalog: RemoteCatalog,
    sku_names: Mapping[str, str] | None = None,
) -> MatchOutcome:
    failed, order = catalog.lookup(store, key)
    if order is None:
        return MatchOutcome(status=failed or NOT_FOUND)
    ledger = ledger_signature(rows, sku_names)
    remote = remote_signature(order)
    return MatchOutcome(
        status=compare_signatures(ledger, remote),
        items_compared=len(ledger),
        ledger=tuple(ledger),
        remote=tuple(remote),
    )


# ══════════════════════════════════════════════════════════════════════════════
# STORE ROUTING
# ══════════════════════════════════════════════════════════════════════════════

def extract_country_from_store_cell(value) -> str | None:
    """``"Cellumove (DE)"`` → ``"DE"``; ``"cellumove fr"`` → ``"FR"``."""
    upper = norm_text(value).upper()
    match = PAREN_CODE_RE.search(upper)
    if match:
        return match.group(1)
    tokens = upper.split()
    if tokens and CODE_RE.match(tokens[-1]):
        return tokens[-1]
    return None


def _first_value(rows: Sequence[CanonicalRow], role: str) -> str:
    for row in rows:
        value = norm_text(row.value(role))
        if value:
            return value
    return ""


def route_store(
    rows: Sequence[CanonicalRow],
    default_store: str,
    routing: Mapping[str, str] | None = None,
) -> str:
    """Pick the remote store whose orders this ledger order should be compared with."""
    routing = STORE_ROUTING if routing is None else routing
    store_cell = _first_value(rows, "store")
    store_text = store_cell.lower()

    for brand in ROUTED_BRANDS:
        if brand in store_text:
            return brand

    if any(marker in store_text for marker in ROUTED_FAMILY_MARKERS):
        code = extract_country_from_store_cell(store_cell)
        if code and code in routing:
            return routing[code]
        code = _first_value(rows, "country").upper()
        if code and code in routing:
            return routing[code]
        return ROUTED_FAMILY

    return default_store


def routed_stores(groups: Iterable[Sequence[CanonicalRow]], default_store: str) -> list[str]:
    """Distinct stores a run needs, in first-seen order."""
    seen: OrderedDict[str, None] = OrderedDict()
    for rows in groups:
        seen.setdefault(route_store(rows, default_store), None)
    return list(seen)
