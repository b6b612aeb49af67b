from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import requests

from invoice_checker.config import StoreConfig
from invoice_checker.errors import ParseError, RemoteLookupError
from invoice_checker.remote import (
    Fatal,
    Ok,
    OrdersCache,
    Retryable,
    ShopifyOrderSource,
    TokenCache,
    classify_response,
    fetch_catalog,
    load_orders_file,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def token_response(token="shpat_abc123456", expires_in=3600):
    return FakeResponse(payload={"access_token": token, "expires_in": expires_in})


def orders_response(names, has_next=False, cursor=None):
    return FakeResponse(
        payload={
            "data": {
                "orders": {
                    "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
                    "edges": [{"node": {"name": name, "lineItems": {"edges": []}}} for name in names],
                }
            }
        }
    )


def store_settings(store):
    return StoreConfig(store=store, domain=f"{store}.myshopify.com", client_id="id", client_secret="secret")


def make_source(responses, **kwargs):
    session = FakeSession(responses)
    sleeps = []
    source = ShopifyOrderSource(
        config_loader=store_settings,
        session=session,
        sleep=sleeps.append,
        version="2025-10",
        **kwargs,
    )
    return source, session, sleeps


def graphql_calls(session):
    return [call for call in session.calls if call[0].endswith("/graphql.json")]


class ClassifyResponseTests(unittest.TestCase):
    def test_statuses(self):
        self.assertEqual(classify_response(orders_response(["#1"])).__class__, Ok)

        throttled = classify_response(FakeResponse(429, headers={"Retry-After": "2.5"}, text=""))
        self.assertIsInstance(throttled, Retryable)
        self.assertEqual(throttled.retry_after, 2.5)

        self.assertIsInstance(classify_response(FakeResponse(503, text="")), Retryable)
        self.assertIsInstance(classify_response(FakeResponse(401, text="denied")), Fatal)
        self.assertIsInstance(classify_response(FakeResponse(200, payload=None, text="<html>")), Fatal)

    def test_graphql_errors(self):
        throttled = FakeResponse(payload={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]})
        self.assertIsInstance(classify_response(throttled), Retryable)

        broken = FakeResponse(payload={"errors": [{"message": "Field 'x' doesn't exist"}]})
        result = classify_response(broken)
        self.assertIsInstance(result, Fatal)
        self.assertIn("Field 'x' doesn't exist", result.reason)


class CacheTests(unittest.TestCase):
    def test_token_cache_expires_early_by_margin(self):
        clock = FakeClock()
        cache = TokenCache(refresh_margin_seconds=60, clock=clock)
        cache.put("yuma", "token", 120)
        clock.now += 59
        self.assertEqual(cache.get("yuma"), "token")
        clock.now += 1
        self.assertIsNone(cache.get("yuma"))

    def test_orders_cache_ttl_is_per_request_shape(self):
        clock = FakeClock()
        cache = OrdersCache(ttl_seconds=300, clock=clock)
        cache.put("yuma", [{"name": "#1"}], limit=10)
        self.assertIsNone(cache.get("yuma"))
        self.assertEqual(cache.get("yuma", limit=10), [{"name": "#1"}])
        clock.now += 300
        self.assertIsNone(cache.get("yuma", limit=10))


class ShopifyOrderSourceTests(unittest.TestCase):
    def test_token_is_minted_once_and_reused(self):
        source, session, _ = make_source([token_response(), orders_response(["#1"]), orders_response(["#2"])])

        source.fetch_orders("yuma", use_cache=False)
        source.fetch_orders("yuma", use_cache=False)

        token_calls = [call for call in session.calls if call[0].endswith("/oauth/access_token")]
        self.assertEqual(len(token_calls), 1)
        self.assertEqual(token_calls[0][0], "https://yuma.myshopify.com/admin/oauth/access_token")
        self.assertEqual(token_calls[0][1]["data"]["grant_type"], "client_credentials")
        url, kwargs = graphql_calls(session)[0]
        self.assertEqual(url, "https://yuma.myshopify.com/admin/api/2025-10/graphql.json")
        self.assertEqual(kwargs["headers"]["X-Shopify-Access-Token"], "shpat_abc123456")

    def test_unauthorized_refreshes_token_once(self):
        source, session, _ = make_source(
            [
                token_response("old-token"),
                FakeResponse(401, text="expired"),
                token_response("new-token"),
                orders_response(["#1"]),
            ]
        )
        orders = source.fetch_orders("yuma")
        self.assertEqual([order["name"] for order in orders], ["#1"])
        tokens = [kwargs["headers"]["X-Shopify-Access-Token"] for _, kwargs in graphql_calls(session)]
        self.assertEqual(tokens, ["old-token", "new-token"])

    def test_second_unauthorized_is_fatal(self):
        source, _, _ = make_source(
            [token_response(), FakeResponse(401, text="no"), token_response(), FakeResponse(401, text="no")]
        )
        with self.assertRaises(RemoteLookupError) as ctx:
            source.fetch_orders("yuma")
        self.assertEqual(ctx.exception.status, 401)

    def test_retryable_responses_back_off(self):
        source, _, sleeps = make_source(
            [
                token_response(),
                FakeResponse(429, headers={"Retry-After": "4"}, text=""),
                FakeResponse(502, text=""),
                requests.ConnectionError("reset"),
                orders_response(["#1"]),
            ]
        )
        orders = source.fetch_orders("yuma")
        self.assertEqual(len(orders), 1)
        self.assertEqual(sleeps, [4.0, 2.0, 4.0])

    def test_retries_are_bounded(self):
        source, _, sleeps = make_source(
            [token_response()] + [FakeResponse(503, text="") for _ in range(3)],
            max_retries=2,
        )
        with self.assertRaises(RemoteLookupError) as ctx:
            source.fetch_orders("yuma")
        self.assertIn("gave up after 2 retries", str(ctx.exception))
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_pagination_pauses_between_pages_and_honours_limit(self):
        source, session, sleeps = make_source(
            [
                token_response(),
                orders_response(["#1", "#2"], has_next=True, cursor="c1"),
                orders_response(["#3", "#4"], has_next=True, cursor="c2"),
            ]
        )
        orders = source.fetch_orders("yuma", limit=3)

        self.assertEqual([order["name"] for order in orders], ["#1", "#2", "#3"])
        self.assertEqual(sleeps, [0.2])
        variables = [kwargs["json"]["variables"] for _, kwargs in graphql_calls(session)]
        self.assertEqual(variables, [{"first": 250, "after": None}, {"first": 250, "after": "c1"}])

    def test_max_pages_and_cache(self):
        source, session, _ = make_source([token_response(), orders_response(["#1"], has_next=True, cursor="c1")])
        first = source.fetch_orders("Yuma", max_pages=1)
        second = source.fetch_orders("yuma", max_pages=1)
        self.assertEqual(first, second)
        self.assertEqual(len(graphql_calls(session)), 1)

    def test_token_rejection_raises(self):
        source, _, _ = make_source([FakeResponse(400, payload={"error": "invalid_client"})])
        with self.assertRaises(RemoteLookupError) as ctx:
            source.fetch_orders("yuma")
        self.assertEqual(ctx.exception.status, 400)


class CatalogTests(unittest.TestCase):
    def test_missing_store_configuration_is_recorded_as_failure(self):
        def failing_loader(store):
            raise ValueError(f"Missing env var(s) for store '{store}': YUMA_SHOPIFY_STORE_DOMAIN")

        source = ShopifyOrderSource(config_loader=failing_loader, session=FakeSession([]), sleep=lambda _: None)
        catalog = fetch_catalog(source, ["yuma"])

        self.assertIn("yuma", catalog.failures)
        self.assertIn("YUMA_SHOPIFY_STORE_DOMAIN", catalog.failures["yuma"])
        self.assertEqual(catalog.lookup("yuma", "1")[0], "source-error")

    def test_fetched_orders_are_indexed(self):
        source, _, _ = make_source([token_response(), orders_response(["#1001", "#1002"])])
        catalog = fetch_catalog(source, ["bloomommy"])
        self.assertEqual(sorted(catalog.orders["bloomommy"]), ["1001", "1002"])


class LoadOrdersFileTests(unittest.TestCase):
    def test_list_and_wrapped_payloads(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            listed = Path(tmpdir) / "a.json"
            listed.write_text(json.dumps([{"name": "#1"}, "junk"]), encoding="utf-8")
            wrapped = Path(tmpdir) / "b.json"
            wrapped.write_text(json.dumps({"store": "yuma", "orders": [{"name": "#2"}]}), encoding="utf-8")

            self.assertEqual(load_orders_file(listed), [{"name": "#1"}])
            self.assertEqual(load_orders_file(wrapped), [{"name": "#2"}])

    def test_invalid_payloads(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            broken = Path(tmpdir) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            scalar = Path(tmpdir) / "scalar.json"
            scalar.write_text("42", encoding="utf-8")

            with self.assertRaises(ParseError):
                load_orders_file(broken)
            with self.assertRaises(ParseError):
                load_orders_file(scalar)
            with self.assertRaises(FileNotFoundError):
                load_orders_file(Path(tmpdir) / "missing.json")

    def test_orders_without_line_items_are_logged(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "orders.json"
            path.write_text(json.dumps([{"name": "#1", "lineItems": []}, {"name": "#2"}]), encoding="utf-8")

            with self.assertLogs("invoice_checker.remote", level="WARNING") as logs:
                orders = load_orders_file(path)

        self.assertEqual(len(orders), 2)
        self.assertIn("Orders in orders.json lack lineItems", logs.output[0])


if __name__ == "__main__":
    unittest.main()
