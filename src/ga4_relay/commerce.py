"""Commerce domain objects consumed by the payload builder.

The shop platform owns orders and products; the relay only reads them
through a ``Catalog``.  ``InMemoryCatalog`` backs tests, demos and hosts
that already hold their domain objects in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

Identifier = Union[int, str]


@dataclass(frozen=True)
class Category:
    id: Identifier
    name: str


@dataclass
class Product:
    """A sellable product.

    ``type`` is one of ``simple``, ``variable``, ``variation`` or
    ``grouped``.  Variable products list their variations' regular prices in
    ``variation_prices``; variations point at their ``parent_id``.
    """

    id: Identifier
    name: str
    type: str = "simple"
    regular_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    category_ids: List[Identifier] = field(default_factory=list)
    parent_id: Optional[Identifier] = None
    variation_attributes: Dict[str, str] = field(default_factory=dict)
    variation_prices: List[Decimal] = field(default_factory=list)

    def is_type(self, product_type: str) -> bool:
        return self.type == product_type


@dataclass
class OrderLine:
    product_id: Identifier
    quantity: int = 1
    variation_id: Optional[Identifier] = None

    @property
    def resolved_product_id(self) -> Identifier:
        return self.variation_id or self.product_id


@dataclass
class Order:
    id: Identifier
    currency: str
    total: Decimal
    number: Optional[str] = None
    status: str = "pending"
    cart_tax: Decimal = Decimal("0")
    shipping_total: Decimal = Decimal("0")
    shipping_tax: Decimal = Decimal("0")
    coupon_codes: List[str] = field(default_factory=list)
    payment_method_title: str = ""
    customer_id: Optional[Identifier] = None
    created_at: Optional[datetime] = None
    lines: List[OrderLine] = field(default_factory=list)

    @property
    def order_number(self) -> str:
        return str(self.number if self.number is not None else self.id)


@dataclass(frozen=True)
class PageContext:
    """What the visitor is looking at when an item is resolved."""

    current_category: Optional[Category] = None

    @property
    def is_category_listing(self) -> bool:
        return self.current_category is not None


class Catalog:
    """Read access to orders, products and categories."""

    def get_order(self, order_id: Identifier) -> Optional[Order]:
        raise NotImplementedError

    def get_product(self, product_id: Identifier) -> Optional[Product]:
        raise NotImplementedError

    def get_category(self, category_id: Identifier) -> Optional[Category]:
        raise NotImplementedError


class InMemoryCatalog(Catalog):
    def __init__(
        self,
        orders: Optional[List[Order]] = None,
        products: Optional[List[Product]] = None,
        categories: Optional[List[Category]] = None,
    ):
        self._orders: Dict[str, Order] = {}
        self._products: Dict[str, Product] = {}
        self._categories: Dict[str, Category] = {}
        for order in orders or []:
            self.add_order(order)
        for product in products or []:
            self.add_product(product)
        for category in categories or []:
            self.add_category(category)

    def add_order(self, order: Order) -> None:
        self._orders[str(order.id)] = order

    def add_product(self, product: Product) -> None:
        self._products[str(product.id)] = product

    def add_category(self, category: Category) -> None:
        self._categories[str(category.id)] = category

    def get_order(self, order_id: Identifier) -> Optional[Order]:
        return self._orders.get(str(order_id))

    def get_product(self, product_id: Identifier) -> Optional[Product]:
        return self._products.get(str(product_id))

    def get_category(self, category_id: Identifier) -> Optional[Category]:
        return self._categories.get(str(category_id))
