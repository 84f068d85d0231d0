"""Tests for PayloadBuilder."""

import logging
from decimal import Decimal

import pytest

from ga4_relay.commerce import Category, Order, OrderLine, PageContext
from ga4_relay.payload import PayloadBuilder, to_decimal


@pytest.fixture
def builder(catalog):
    return PayloadBuilder(catalog, affiliation="Test Shop")


class TestBuildItem:
    def test_simple_product(self, builder):
        item = builder.build_item(1)

        assert item.item_id == "1"
        assert item.item_name == "Runner"
        assert item.item_category == "Shoes"
        assert item.price == Decimal("50.00")
        assert item.discount == Decimal("10.00")
        assert item.item_variant is None

    def test_category_listing_overrides_category(self, builder):
        page = PageContext(current_category=Category(99, "Summer Sale"))
        assert builder.build_item(1, page).item_category == "Summer Sale"

    def test_variable_product_uses_lowest_variation_price(self, builder):
        item = builder.build_item(2)

        assert item.price == Decimal("15")
        assert item.item_category == "Shirts"

    def test_grouped_product_has_no_price(self, builder):
        item = builder.build_item(3)

        assert item.price is None
        assert "price" not in item.to_params()

    def test_variation_attributes_and_parent_category(self, builder):
        item = builder.build_item(21)

        assert item.item_variant == "Red, L"
        assert item.item_category == "Shirts"
        assert item.price == Decimal("15")

    def test_parent_category_wins_over_listing_page(self, builder):
        page = PageContext(current_category=Category(99, "Summer Sale"))
        assert builder.build_item(21, page).item_category == "Shirts"

    def test_missing_product(self, builder):
        assert builder.build_item(404) is None


class TestBuildPurchasePayload:
    def test_order_totals(self, builder):
        payload = builder.build_purchase_payload(1001)

        assert payload.transaction_id == "A-1001"
        assert payload.value == Decimal("120.50")
        assert payload.currency == "EUR"
        assert payload.tax == Decimal("10.00")
        assert payload.shipping == Decimal("6.50")
        assert payload.coupon == "SPRING, VIP"
        assert payload.affiliation == "Test Shop"
        assert payload.payment_type == "Credit Card"

    def test_unresolvable_lines_are_skipped(self, builder):
        payload = builder.build_purchase_payload(1001)

        assert [item.item_id for item in payload.items] == ["1", "21"]
        assert payload.items[0].quantity == 2

    def test_transaction_id_falls_back_to_order_id(self, builder):
        assert builder.build_purchase_payload(1002).transaction_id == "1002"

    def test_missing_order_returns_none(self, builder, caplog):
        with caplog.at_level(logging.ERROR, logger="ga4_relay.payload"):
            assert builder.build_purchase_payload(404) is None
        assert "404" in caplog.text

    def test_empty_order_id(self, builder):
        assert builder.build_purchase_payload("") is None

    def test_two_lines_with_quantities(self, catalog):
        catalog.add_order(
            Order(3001, "EUR", Decimal("127.50"), lines=[OrderLine(1, 1), OrderLine(2, 3)])
        )
        payload = PayloadBuilder(catalog).build_purchase_payload(3001)
        params = payload.to_params()

        assert len(params["items"]) == 2
        assert params["value"] == 127.5
        assert [item["quantity"] for item in params["items"]] == [1, 3]
        assert all(isinstance(item["item_id"], str) for item in params["items"])

    def test_server_params(self, builder):
        params = builder.build_server_params(1001)

        assert params["value"] == 120.5
        assert params["shipping"] == 6.5
        assert all("discount" not in item for item in params["items"])


class TestToDecimal:
    def test_conversions(self):
        assert to_decimal("19.99") == Decimal("19.99")
        assert to_decimal(5) == Decimal("5")
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("n/a") == Decimal("0")
