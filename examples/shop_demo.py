#!/usr/bin/env python3
"""
Shop Demo
=========

Walks one guest order and one customer order through every trigger:
  1. Payment webhook      — purchase delivered server-side, conversion parked
  2. Thank-you page       — parked guest conversion handed to the browser
  3. Later page render    — pending conversions replayed until cleared
  4. Duplicate triggers   — nothing is sent twice

By default the GA4 collector is replaced with an in-process fake so the demo
runs offline.  Set GA4_RELAY_MEASUREMENT_ID and GA4_RELAY_API_SECRET to send
to the real Measurement Protocol instead.

Run:
    python examples/shop_demo.py
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

import httpx
from fastapi import Request
from fastapi.responses import HTMLResponse

from ga4_relay import (
    AnalyticsRelay,
    InMemoryCatalog,
    Order,
    OrderLine,
    Product,
    Settings,
    Visitor,
)
from ga4_relay.app import create_app
from ga4_relay.middleware import PendingConversionMiddleware, visitor_from_request
from ga4_relay.queue import ANONYMOUS_COOKIE
from ga4_relay.relay import ACTION_ORDER_WEBHOOK

SENT: List[dict] = []


def fake_collector(request: httpx.Request) -> httpx.Response:
    SENT.append(json.loads(request.content))
    return httpx.Response(204)


def build_catalog() -> InMemoryCatalog:
    created = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    return InMemoryCatalog(
        products=[
            Product(1, "Trail Runner", regular_price=Decimal("89.00")),
            Product(2, "Wool Socks", regular_price=Decimal("12.50")),
        ],
        orders=[
            Order(5001, "EUR", Decimal("101.50"), customer_id=42, created_at=created,
                  lines=[OrderLine(1), OrderLine(2)]),
            Order(5002, "EUR", Decimal("25.00"), created_at=created,
                  lines=[OrderLine(2, quantity=2)]),
        ],
    )


def build_settings() -> Settings:
    settings = Settings.from_env()
    return dataclasses.replace(
        settings,
        measurement_id=settings.measurement_id or "G-DEMO123",
        api_secret=settings.resolved_api_secret or "demo-secret",
        server_side_enabled=True,
        ads_conversion_id=settings.ads_conversion_id or "1234567",
        ads_purchase_label=settings.ads_purchase_label or "demoLabel",
        token_secret=settings.token_secret or "demo-token-secret",
    )


def banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    offline = not os.environ.get("GA4_RELAY_API_SECRET")
    http_client = httpx.Client(transport=httpx.MockTransport(fake_collector)) if offline else None
    relay = AnalyticsRelay.build(build_settings(), build_catalog(), http_client=http_client)

    app = create_app(relay)

    @app.get("/checkout/order-received/{order_id}", response_class=HTMLResponse)
    def thank_you(order_id: str, request: Request):
        snippet = relay.adapters.on_thank_you(order_id, visitor_from_request(request))
        return f"<html><body><h1>Thank you for order {order_id}</h1>{snippet}</body></html>"

    @app.get("/", response_class=HTMLResponse)
    def home():
        return "<html><body><h1>Shop</h1></body></html>"

    app.add_middleware(PendingConversionMiddleware, relay=relay)

    webhook_headers = {"X-Relay-Token": relay.signer.sign(ACTION_ORDER_WEBHOOK)}
    transport = httpx.ASGITransport(app=app)

    async with httpx.AsyncClient(transport=transport, base_url="http://shop.local") as shop:
        banner("1. Payment webhooks (no browser attached)")
        for order_id in (5001, 5002):
            response = await shop.post(
                "/ga4-relay/webhooks/order",
                headers=webhook_headers,
                json={"order_id": order_id, "event": "payment_complete"},
            )
            print(f"   order {order_id}: {response.json()['data']['delivery']}")

        banner("2. Guest lands on the thank-you page")
        response = await shop.get("/checkout/order-received/5002")
        token = response.cookies.get(ANONYMOUS_COOKIE)
        print(f"   conversion script injected: {'delayed conversions' in response.text}")
        print(f"   {ANONYMOUS_COOKIE} cookie: {token}")

        banner("3. Duplicate triggers")
        for _ in range(3):
            await shop.post(
                "/ga4-relay/webhooks/order",
                headers=webhook_headers,
                json={"order_id": 5001, "event": "payment_complete"},
            )
        relay.adapters.on_status_changed(5001, "on-hold", "processing")
        relay.adapters.on_thank_you(5001, Visitor(user_id="42"))

    banner("4. Customer 42 returns later")
    pending = relay.render_pending(Visitor(user_id="42"), "/ga4-relay/pending-conversions/clear")
    print(f"   pending conversion script rendered: {bool(pending)}")

    if offline:
        banner("Collector received")
        for payload in SENT:
            event = payload["events"][0]
            print(f"   {event['name']:<10} {event['params']['transaction_id']:<8} "
                  f"client_id={payload['client_id']}")
        print(f"\n   {len(SENT)} purchase events for 2 orders")

    relay.close()
    if http_client is not None:
        http_client.close()


if __name__ == "__main__":
    asyncio.run(main())
