"""
Central configuration for invoice-checker.

This module defines:
- Column aliases used to locate ledger and quotation columns by name.
- The economically-significant columns used to collapse duplicate ledger rows.
- The baseline country → quotation column table.
- Store routing for the remote order source.
- Environment-driven settings for the remote order source and CLI outputs.

Constants only, plus a few small readers for environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

AMOUNT_TOLERANCE = 0.01
CORRECTION_DECIMALS = 2

DEFAULT_STORE = "bloomommy"
DEFAULT_API_VERSION = "2025-10"
ORDERS_PAGE_SIZE = 250
LINE_ITEMS_PAGE_SIZE = 50
PAGE_PAUSE_SECONDS = 0.2
TOKEN_REFRESH_MARGIN_SECONDS = 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 86_399
ORDERS_CACHE_TTL_SECONDS = 15 * 60
REQUEST_TIMEOUT_SECONDS = 60
TOKEN_TIMEOUT_SECONDS = 30

QUOTATION_SHEET = "Quotation"
QUANTITY_TIER_SHEET = "QTY=1-5"
QUANTITY_TIER_RANGE = (1, 5)

COLUMN_ALIASES = {
    "order": ("Order#", "Order #", "Order Number", "Order"),
    "country": ("Country", "Ship Country", "Shipping Country"),
    "store": ("Store",),
    "tracking": ("Tracking", "Tracking #", "Tracking Number"),
    "carrier": ("Carrier",),
    "quantity": ("QTY", "Quantity"),
    "item": ("Item", "SKU.1", "SKU"),
    "sku": ("SKU", "Sku", "Variant SKU", "Variant Sku", "SKU.1"),
    "cost": ("Cost",),
    "upsell": ("Upsell",),
    "total": ("Total",),
    "variant": ("Variant",),
    "line_items": ("Line Items", "Line Item"),
    "item_name": ("Item name", "Item Name", "Item", "Name"),
}

# Duplicate ledger rows are identical across all of these.
DEDUPE_COLUMNS = (
    "Store",
    "Order#",
    "Country",
    "Tracking",
    "Carrier",
    "Item",
    "SKU.1",
    "SKU",
    "QTY",
    "Cost",
    "Upsell",
    "Total",
)

# Amount columns read per row when reconciling totals.
TOTAL_COLUMNS = ("cost", "upsell", "total")

# Several entries point at another country's columns (PL, PT) and
# "GB-remote area" shares the GB prefix. They are reported, not rewritten.
BASE_COUNTRY_COLUMNS = {
    "FR": ("Total to FR", "Upsell to FR"),
    "BE": ("Total to BE", "Upsell to BE"),
    "CH": ("Total to CH", "Upsell to CH"),
    "CA": ("Total to CA", "Upsell to CA"),
    "CZ": ("Total to CZ", "Upsell to CZ"),
    "SK": ("Total to SK", "Upsell to SK"),
    "RO": ("Total to RO", "Upsell to RO"),
    "ES": ("Total to ES", "Upsell to ES"),
    "IT": ("Total to IT", "Upsell to IT"),
    "GR": ("Total to GR", "Upsell to GR"),
    "PL": ("Total to GR", "Upsell to PL"),
    "GB": ("Total to GB", "Upsell to GB"),
    "GB-remote area": ("Total to GB-remote area", "Upsell to GB-remote area"),
    "US": ("Total to US", "Upsell to US"),
    "PT": ("Total to GR", "Upsell to GR"),
    "DE": ("Total to DE", "Upsell to DE"),
    "AU-1": ("Total to AU-1", "Upsell to AU-1"),
    "AU-2": ("Total to AU-2", "Upsell to AU-2"),
    "AU-3": ("Total to AU-3", "Upsell to AU-3"),
    "AU-4": ("Total to AU-4", "Upsell to AU-4"),
    "NZ": ("Total to NZ", "Upsell to NZ"),
    "MA": ("Total to MA", "Upsell to MA"),
    "ZA": ("Total to ZA", "Upsell to ZA"),
    "AE": ("Total to AE", "Upsell to AE"),
    "MT": ("Total to MT", "Upsell to MT"),
    "SE": ("Total to SE", "Upsell to SE"),
    "MX": ("Total to MX", "Upsell to MX"),
    "EG": ("Total to EG", "Upsell to EG"),
    "AT": ("Total to AT", "Upsell to AT"),
    "DK": ("Total to DK", "Upsell to DK"),
    "FI": ("Total to FI", "Upsell to FI"),
    "SI": ("Total to SI", "Upsell to SI"),
    "BR": ("Total to BR", "Upsell to BR"),
    "LT": ("Total to LT", "Upsell to LT"),
    "NL": ("Total to NL", "Upsell to NL"),
    "IL": ("Total to IL", "Upsell to IL"),
    "MY": ("Total to MY", "Upsell to MY"),
    "LV": ("Total to LV", "Upsell to LV"),
    "MX-tax included": ("Total to MX-tax included", "Upsell to MX-tax included"),
    "BG": ("Total to BG", "Upsell to BG"),
    "CO": ("Total to CO", "Upsell to CO"),
    "EE": ("Total to EE", "Upsell to EE"),
    "IN": ("Total to IN", "Upsell to IN"),
    "BH": ("Total to BH", "Upsell to BH"),
    "HR": ("Total to HR", "Upsell to HR"),
    "QA": ("Total to QA", "Upsell to QA"),
    "IE": ("Total to IE", "Upsell to IE"),
}

KNOWN_STORES = ("bloomommy", "cellumove", "yuma")

# Country code in the ledger's Store/Country cell → cellumove storefront.
STORE_ROUTING = {
    "UK": "cellumove",
    "DE": "cellumove_de",
    "CZ": "cellumove_cz",
    "ES": "cellumove_es",
    "FR": "cellumove_fr",
    "GR": "cellumove_gr",
    "MX": "cellumove_mx",
    "PL": "cellumove_pl",
    "PT": "cellumove_pt",
    "RO": "cellumove_ro",
}
ROUTED_BRANDS = ("bloomommy", "yuma")
ROUTED_FAMILY = "cellumove"
ROUTED_FAMILY_MARKERS = ("cellumove", "cellu")


@dataclass(frozen=True)
class ReconConfig:
    tolerance: float = AMOUNT_TOLERANCE
    default_store: str = DEFAULT_STORE
    quotation_sheet: str = QUOTATION_SHEET
    tier_sheet: str = QUANTITY_TIER_SHEET


@dataclass(frozen=True)
class StoreConfig:
    store: str
    domain: str
    client_id: str
    client_secret: str


def env_trim(name: str) -> str:
    return os.environ.get(name, "").strip()


def env_prefix(store: str) -> str:
    return store.strip().upper().replace("-", "_")


def store_config(store: str) -> StoreConfig:
    """Read credentials for one store from ``<STORE>_SHOPIFY_*`` variables."""
    prefix = env_prefix(store)
    names = {
        "domain": f"{prefix}_SHOPIFY_STORE_DOMAIN",
        "client_id": f"{prefix}_SHOPIFY_CLIENT_ID",
        "client_secret": f"{prefix}_SHOPIFY_CLIENT_SECRET",
    }
    values = {field: env_trim(var) for field, var in names.items()}
    missing = [names[field] for field, value in values.items() if not value]
    if missing:
        raise ValueError(f"Missing env var(s) for store '{store}': {', '.join(missing)}")
    return StoreConfig(store=store.strip().lower(), **values)


def api_version() -> str:
    return env_trim("SHOPIFY_API_VERSION") or DEFAULT_API_VERSION


def output_stamp() -> str | None:
    return env_trim("INVOICE_CHECKER_OUTPUT_STAMP") or None
