"""Shared fixtures: a small shop catalog, settings and a fake GA4 collector."""

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from ga4_relay.commerce import Category, InMemoryCatalog, Order, OrderLine, Product
from ga4_relay.config import Settings
from ga4_relay.relay import AnalyticsRelay
from ga4_relay.store import InMemoryStore

MEASUREMENT_ID = "G-TEST123"
SEND_TO = "AW-123/abc"


class Collector:
    """Stands in for the Measurement Protocol endpoint."""

    def __init__(self):
        self.status_code = 204
        self.text = ""
        self.error = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]

    @property
    def event_names(self):
        return [e["name"] for p in self.payloads for e in p["events"]]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def run_racing(fn, threads: int = 16):
    """Call ``fn(i)`` from ``threads`` threads released together; errors propagate."""
    barrier = threading.Barrier(threads)

    def run(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=threads) as pool:
        return list(pool.map(run, range(threads)))


@pytest.fixture
def race():
    return run_racing


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def http_client(collector):
    client = httpx.Client(transport=httpx.MockTransport(collector.handler))
    yield client
    client.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return InMemoryCatalog(
        categories=[
            Category(10, "Shoes"),
            Category(11, "Shirts"),
            Category(12, "Bundles"),
        ],
        products=[
            Product(
                1,
                "Runner",
                regular_price=Decimal("50.00"),
                sale_price=Decimal("40.00"),
                category_ids=[10],
            ),
            Product(
                2,
                "Tee",
                type="variable",
                category_ids=[11],
                variation_prices=[Decimal("25"), Decimal("15"), Decimal("20")],
            ),
            Product(
                21,
                "Tee - Red, L",
                type="variation",
                parent_id=2,
                regular_price=Decimal("15"),
                variation_attributes={"color": "Red", "size": "L"},
            ),
            Product(3, "Starter Bundle", type="grouped", category_ids=[12]),
        ],
        orders=[
            Order(
                1001,
                "EUR",
                Decimal("120.50"),
                number="A-1001",
                status="processing",
                cart_tax=Decimal("10.00"),
                shipping_total=Decimal("5.00"),
                shipping_tax=Decimal("1.50"),
                coupon_codes=["SPRING", "VIP"],
                payment_method_title="Credit Card",
                customer_id=7,
                created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
                lines=[
                    OrderLine(1, quantity=2),
                    OrderLine(2, quantity=1, variation_id=21),
                    OrderLine(999, quantity=1),
                ],
            ),
            # Guest checkout: no customer account.
            Order(1002, "USD", Decimal("40.00"), lines=[OrderLine(1, quantity=1)]),
        ],
    )


@pytest.fixture
def settings():
    return Settings(
        measurement_id=MEASUREMENT_ID,
        api_secret="mp-secret",
        server_side_enabled=True,
        ads_conversion_id="123",
        ads_purchase_label="abc",
        token_secret="token-secret",
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def relay(settings, catalog, store, http_client):
    relay = AnalyticsRelay.build(settings, catalog, store=store, http_client=http_client)
    yield relay
    relay.close()
