"""GA4 Relay — reliable purchase and conversion reporting for web shops.

Reports a completed order to Google Analytics 4 through the Measurement
Protocol and to Google Ads through a browser script, at most once per order,
even when the buyer never sees the confirmation page.

Integration points (pick any or combine):
    1. Order hooks        — relay.adapters.on_payment_complete / on_status_changed
    2. Thank-you page     — relay.adapters.on_thank_you returns HTML to embed
    3. FastAPI routes     — create_app(relay) for custom events and webhooks
    4. Page middleware    — PendingConversionMiddleware replays queued conversions
"""

from ga4_relay.commerce import Catalog, InMemoryCatalog, Order, OrderLine, Product
from ga4_relay.config import Settings
from ga4_relay.errors import (
    ConfigurationError,
    DataError,
    RelayError,
    SendResult,
    TransportError,
    ValidationError,
)
from ga4_relay.relay import AnalyticsRelay
from ga4_relay.store import InMemoryStore, SqliteStore
from ga4_relay.tracker import Visitor
from ga4_relay.transport import DeliveryContext, MeasurementProtocolClient


def __getattr__(name: str):
    if name == "PendingConversionMiddleware":
        from ga4_relay.middleware import PendingConversionMiddleware

        return PendingConversionMiddleware
    if name == "create_app":
        from ga4_relay.app import create_app

        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AnalyticsRelay",
    "Settings",
    "Catalog",
    "InMemoryCatalog",
    "Order",
    "OrderLine",
    "Product",
    "Visitor",
    "DeliveryContext",
    "MeasurementProtocolClient",
    "InMemoryStore",
    "SqliteStore",
    "SendResult",
    "RelayError",
    "ConfigurationError",
    "ValidationError",
    "TransportError",
    "DataError",
    "PendingConversionMiddleware",
    "create_app",
]

__version__ = "0.1.0"
