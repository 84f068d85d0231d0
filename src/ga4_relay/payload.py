"""Build GA4 purchase payloads from commerce orders.

The same payload feeds the browser (gtag ``purchase`` / Ads ``conversion``)
and the Measurement Protocol, so item ids and the transaction id are always
strings and money is kept as ``Decimal`` until serialization.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from ga4_relay.commerce import Catalog, Identifier, PageContext, Product
from ga4_relay.errors import DataError
from ga4_relay.events import Item, PurchasePayload

logger = logging.getLogger(__name__)


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


class PayloadBuilder:
    """Assemble ``PurchasePayload`` objects from a ``Catalog``."""

    def __init__(self, catalog: Catalog, affiliation: str = ""):
        self.catalog = catalog
        self.affiliation = affiliation

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    def build_item(
        self,
        product_id: Identifier,
        page: Optional[PageContext] = None,
    ) -> Optional[Item]:
        """Resolve one product into an ``Item``; None if it does not exist."""
        product = self.catalog.get_product(product_id)
        if product is None:
            return None

        category = self._first_category_name(product)
        # A category listing page wins over the product's own category.
        if page is not None and page.is_category_listing:
            category = page.current_category.name

        item = Item(
            item_id=str(product.id),
            item_name=product.name,
            item_category=category,
        )

        if product.is_type("variable"):
            if product.variation_prices:
                item.price = min(to_decimal(p) for p in product.variation_prices)
        elif not product.is_type("grouped"):
            item.price = to_decimal(product.regular_price)

        if product.sale_price:
            item.discount = to_decimal(product.regular_price) - to_decimal(
                product.sale_price
            )

        if product.is_type("variation"):
            item.item_variant = ", ".join(product.variation_attributes.values())
            parent = (
                self.catalog.get_product(product.parent_id)
                if product.parent_id is not None
                else None
            )
            if parent is not None:
                parent_category = self._first_category_name(parent)
                if parent_category:
                    item.item_category = parent_category

        return item

    def _first_category_name(self, product: Product) -> str:
        if not product.category_ids:
            return ""
        category = self.catalog.get_category(product.category_ids[0])
        return category.name if category else ""

    # ------------------------------------------------------------------ #
    # Purchase
    # ------------------------------------------------------------------ #

    def build_purchase_payload(
        self,
        order_id: Identifier,
        page: Optional[PageContext] = None,
    ) -> Optional[PurchasePayload]:
        """Build the purchase payload for an order.

        Lines whose product cannot be resolved are dropped; only an order
        that cannot be resolved fails the whole payload.
        """
        try:
            return self._build_purchase(order_id, page)
        except DataError as exc:
            logger.error("Purchase payload for order %s not built: %s", order_id, exc)
            return None

    def _build_purchase(
        self,
        order_id: Identifier,
        page: Optional[PageContext],
    ) -> PurchasePayload:
        if order_id in (None, "", 0):
            raise DataError("missing order id")
        order = self.catalog.get_order(order_id)
        if order is None:
            raise DataError(f"order {order_id} not found")

        items: List[Item] = []
        for line in order.lines:
            item = self.build_item(line.resolved_product_id, page)
            if item is None:
                logger.debug(
                    "Order %s: skipping unresolvable product %s",
                    order_id,
                    line.resolved_product_id,
                )
                continue
            item.quantity = max(int(line.quantity), 1)
            items.append(item)

        return PurchasePayload(
            transaction_id=order.order_number,
            value=to_decimal(order.total),
            currency=order.currency,
            # Shipping tax is reported with shipping, not here.
            tax=to_decimal(order.cart_tax),
            shipping=to_decimal(order.shipping_total) + to_decimal(order.shipping_tax),
            coupon=", ".join(order.coupon_codes),
            affiliation=self.affiliation,
            payment_type=order.payment_method_title,
            items=items,
        )

    def build_server_params(self, order_id: Identifier) -> Optional[Dict[str, Any]]:
        """Purchase params ready for the Measurement Protocol."""
        payload = self.build_purchase_payload(order_id)
        if payload is None:
            return None
        return payload.to_params(include_discount=False)
