"""
Remote order source: Shopify Admin GraphQL over requests.

Responsibilities:
- Mint client-credentials access tokens per store and cache them until shortly
  before they expire (``TokenCache``).
- Page through ``orders`` with their line items, pausing between pages.
- Classify each HTTP exchange as ``Ok``, ``Retryable`` or ``Fatal`` and retry
  the retryable ones with exponential backoff. A 401 forces one token refresh.
- Keep fetched orders per store for a TTL (``OrdersCache``).

Nothing here is used by the reconciliation engine directly: the engine only
sees a ``RemoteCatalog`` built by ``fetch_catalog`` or from JSON files.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Union

import requests

from invoice_checker.contracts import missing_record_fields
from invoice_checker.config import (
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    LINE_ITEMS_PAGE_SIZE,
    ORDERS_CACHE_TTL_SECONDS,
    ORDERS_PAGE_SIZE,
    PAGE_PAUSE_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    TOKEN_REFRESH_MARGIN_SECONDS,
    TOKEN_TIMEOUT_SECONDS,
    StoreConfig,
    api_version,
    store_config,
)
from invoice_checker.errors import ParseError, RemoteLookupError
from invoice_checker.matching import RemoteCatalog

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)
THROTTLED = "THROTTLED"

ORDERS_QUERY = """
query OrdersPage($first: Int!, $after: String) {
  orders(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        name
        createdAt
        displayFinancialStatus
        displayFulfillmentStatus
        customer { firstName lastName email }
        billingAddress { address1 address2 city province country zip }
        lineItems(first: %d) {
          edges {
            node {
              title
              quantity
              currentQuantity
              variantTitle
              fulfillableQuantity
              fulfillmentStatus
              variant { id title }
            }
          }
        }
      }
    }
  }
}
""" % LINE_ITEMS_PAGE_SIZE


# ══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Ok:
    data: Any


@dataclass(frozen=True)
class Retryable:
    reason: str
    status: int | None = None
    retry_after: float | None = None


@dataclass(frozen=True)
class Fatal:
    reason: str
    status: int | None = None


FetchResult = Union[Ok, Retryable, Fatal]


def _retry_after(response: requests.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def classify_response(response: requests.Response) -> FetchResult:
    status = response.status_code
    if status in RETRYABLE_STATUSES:
        return Retryable(f"HTTP {status}", status=status, retry_after=_retry_after(response))
    if status >= 400:
        return Fatal(f"HTTP {status}: {response.text[:300]}", status=status)
    try:
        payload = response.json()
    except ValueError:
        return Fatal("response was not JSON", status=status)

    errors = payload.get("errors") if isinstance(payload, dict) else None
    if errors:
        codes = {
            str((error.get("extensions") or {}).get("code", "")).upper()
            for error in errors
            if isinstance(error, dict)
        }
        if THROTTLED in codes:
            return Retryable("GraphQL query throttled", status=status)
        messages = "; ".join(str(error.get("message", error)) if isinstance(error, dict) else str(error) for error in errors)
        return Fatal(f"GraphQL errors: {messages}", status=status)
    if not isinstance(payload, dict):
        return Fatal("unexpected response payload", status=status)
    return Ok(payload.get("data") or {})


# ══════════════════════════════════════════════════════════════════════════════
# CACHES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class CachedToken:
    token: str
    expires_at: float


@dataclass
class TokenCache:
    """Access tokens per store; an entry is stale ``refresh_margin_seconds`` early."""

    refresh_margin_seconds: float = TOKEN_REFRESH_MARGIN_SECONDS
    clock: Callable[[], float] = time.monotonic
    entries: dict[str, CachedToken] = field(default_factory=dict)

    def get(self, store: str) -> str | None:
        entry = self.entries.get(store)
        if entry is None or entry.expires_at <= self.clock():
            return None
        return entry.token

    def put(self, store: str, token: str, lifetime_seconds: float) -> None:
        ttl = max(1.0, lifetime_seconds - self.refresh_margin_seconds)
        self.entries[store] = CachedToken(token=token, expires_at=self.clock() + ttl)

    def invalidate(self, store: str) -> None:
        self.entries.pop(store, None)


@dataclass
class OrdersCache:
    ttl_seconds: float = ORDERS_CACHE_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    entries: dict[tuple[str, int, int], tuple[float, list[dict]]] = field(default_factory=dict)

    def get(self, store: str, limit: int = 0, max_pages: int = 0) -> list[dict] | None:
        entry = self.entries.get((store, limit, max_pages))
        if entry is None:
            return None
        stored_at, orders = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self.entries[(store, limit, max_pages)]
            return None
        return orders

    def put(self, store: str, orders: list[dict], limit: int = 0, max_pages: int = 0) -> None:
        self.entries[(store, limit, max_pages)] = (self.clock(), orders)


# ══════════════════════════════════════════════════════════════════════════════
# SHOPIFY SOURCE
# ══════════════════════════════════════════════════════════════════════════════

def _token_suffix(token: str) -> str:
    return token[-6:] if len(token) >= 6 else token


class ShopifyOrderSource:
    """Fetch orders for a store key such as ``bloomommy`` or ``cellumove_de``."""

    def __init__(
        self,
        *,
        config_loader: Callable[[str], StoreConfig] = store_config,
        token_cache: TokenCache | None = None,
        orders_cache: OrdersCache | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        version: str | None = None,
    ) -> None:
        self.config_loader = config_loader
        self.token_cache = token_cache or TokenCache()
        self.orders_cache = orders_cache or OrdersCache()
        self.session = session or requests.Session()
        self.sleep = sleep
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.version = version or api_version()

    def store_settings(self, store: str) -> StoreConfig:
        try:
            return self.config_loader(store)
        except ValueError as exc:
            raise RemoteLookupError(store, str(exc)) from exc

    def mint_token(self, cfg: StoreConfig) -> str:
        url = f"https://{cfg.domain}/admin/oauth/access_token"
        try:
            response = self.session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": cfg.client_id,
                    "client_secret": cfg.client_secret,
                },
                timeout=TOKEN_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise RemoteLookupError(cfg.store, f"token request failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteLookupError(cfg.store, "token request rejected", status=response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteLookupError(cfg.store, "token response was not JSON", status=response.status_code) from exc

        token = str(payload.get("access_token") or "")
        if not token:
            raise RemoteLookupError(cfg.store, f"no access_token returned for {cfg.domain}")
        try:
            lifetime = float(payload.get("expires_in") or 0) or DEFAULT_TOKEN_LIFETIME_SECONDS
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME_SECONDS
        self.token_cache.put(cfg.store, token, lifetime)
        logger.info("Minted access token for %s (%s) ending %s", cfg.store, cfg.domain, _token_suffix(token))
        return token

    def access_token(self, cfg: StoreConfig, *, force_refresh: bool = False) -> str:
        if force_refresh:
            self.token_cache.invalidate(cfg.store)
        else:
            cached = self.token_cache.get(cfg.store)
            if cached:
                return cached
        return self.mint_token(cfg)

    def graphql(self, cfg: StoreConfig, token: str, query: str, variables: dict | None = None) -> FetchResult:
        url = f"https://{cfg.domain}/admin/api/{self.version}/graphql.json"
        try:
            response = self.session.post(
                url,
                json={"query": query, "variables": variables or {}},
                headers={"Content-Type": "application/json", "X-Shopify-Access-Token": token},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            return Retryable(f"network error: {exc}")
        return classify_response(response)

    def execute(self, cfg: StoreConfig, query: str, variables: dict | None = None) -> dict:
        """Run one query through the retry loop and return its ``data``."""
        token = self.access_token(cfg)
        refreshed = False
        attempt = 0
        while True:
            result = self.graphql(cfg, token, query, variables)
            if isinstance(result, Ok):
                return result.data
            if isinstance(result, Fatal):
                if result.status == 401 and not refreshed:
                    logger.warning("401 from %s; refreshing token and retrying once", cfg.store)
                    token = self.access_token(cfg, force_refresh=True)
                    refreshed = True
                    continue
                raise RemoteLookupError(cfg.store, result.reason, status=result.status)

            attempt += 1
            if attempt > self.max_retries:
                raise RemoteLookupError(
                    cfg.store,
                    f"gave up after {self.max_retries} retries: {result.reason}",
                    status=result.status,
                )
            delay = result.retry_after or self.backoff_seconds * (2 ** (attempt - 1))
            logger.warning("%s for %s; retry %d/%d in %.1fs", result.reason, cfg.store, attempt, self.max_retries, delay)
            self.sleep(delay)

    def fetch_orders(self, store: str, *, limit: int = 0, max_pages: int = 0, use_cache: bool = True) -> list[dict]:
        store = store.strip().lower()
        if use_cache:
            cached = self.orders_cache.get(store, limit, max_pages)
            if cached is not None:
                logger.info("Using %d cached orders for %s", len(cached), store)
                return cached

        cfg = self.store_settings(store)
        orders: list[dict] = []
        after = None
        page = 0
        while True:
            page += 1
            data = self.execute(cfg, ORDERS_QUERY, {"first": ORDERS_PAGE_SIZE, "after": after})
            connection = data.get("orders") or {}
            nodes = [edge.get("node") for edge in connection.get("edges") or [] if edge.get("node")]
            orders.extend(nodes)
            logger.info("Fetched page %d for %s (%d orders so far)", page, store, len(orders))

            page_info = connection.get("pageInfo") or {}
            if limit > 0 and len(orders) >= limit:
                orders = orders[:limit]
                break
            if max_pages > 0 and page >= max_pages:
                break
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
            self.sleep(PAGE_PAUSE_SECONDS)

        self.orders_cache.put(store, orders, limit, max_pages)
        return orders


# ══════════════════════════════════════════════════════════════════════════════
# CATALOG BUILDERS
# ══════════════════════════════════════════════════════════════════════════════

def fetch_catalog(
    source: ShopifyOrderSource,
    stores: Iterable[str],
    *,
    catalog: RemoteCatalog | None = None,
    limit: int = 0,
    max_pages: int = 0,
) -> RemoteCatalog:
    """Fetch each store into a catalog, recording failures instead of raising."""
    catalog = catalog or RemoteCatalog()
    for store in stores:
        try:
            orders = source.fetch_orders(store, limit=limit, max_pages=max_pages)
        except RemoteLookupError as exc:
            logger.warning("%s", exc)
            catalog.add_failure(store, str(exc))
            continue
        catalog.add_orders(store, orders)
    return catalog


def load_orders_file(path: Path) -> list[dict]:
    """Read orders saved by ``invoice-checker orders`` or any list of order objects."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(path.name, f"invalid orders JSON: {exc}") from exc

    return orders_from_payload(payload, path.name)


def orders_from_payload(payload: Any, source: str) -> list[dict]:
    if isinstance(payload, dict):
        payload = payload.get("orders")
    if not isinstance(payload, list):
        raise ParseError(source, "expected a list of orders or an object with an 'orders' list")
    orders = [order for order in payload if isinstance(order, dict)]
    missing = missing_record_fields("invoice_checker.orders", orders)
    if missing:
        logger.warning("Orders in %s lack %s; those orders cannot be matched", source, ", ".join(missing))
    return orders
