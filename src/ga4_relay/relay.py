"""AnalyticsRelay — builds every service once and wires them together.

Construct one relay at startup and pass it to the web layer::

    relay = AnalyticsRelay.build(
        Settings.from_env(),
        catalog=my_catalog,
        store=SqliteStore(Path("var/relay.sqlite3")),
    )
    app = create_app(relay)
    app.add_middleware(PendingConversionMiddleware, relay=relay)

    # from the shop's own order hooks:
    relay.adapters.on_payment_complete(order_id)
    relay.adapters.on_status_changed(order_id, "pending", "processing")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from ga4_relay.adapters import EventSourceAdapters
from ga4_relay.commerce import Catalog
from ga4_relay.config import Settings
from ga4_relay.guard import IdempotencyGuard
from ga4_relay.payload import PayloadBuilder
from ga4_relay.queue import ANONYMOUS_COOKIE, DelayedDeliveryQueue, IdentityScope
from ga4_relay.router import CustomEventRouter
from ga4_relay.scripts import render_delayed_conversions
from ga4_relay.security import TokenSigner
from ga4_relay.store import InMemoryStore, KeyValueStore
from ga4_relay.tracker import ConversionTracker, PurchaseTracker, Visitor
from ga4_relay.transport import MeasurementProtocolClient, PayloadTransform

logger = logging.getLogger(__name__)

ACTION_CUSTOM_EVENT = "custom_event"
ACTION_CLEAR_PENDING = "clear_pending_conversions"
ACTION_ORDER_WEBHOOK = "order_webhook"


class AnalyticsRelay:
    def __init__(
        self,
        settings: Settings,
        catalog: Catalog,
        *,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.Client] = None,
        transforms: Iterable[PayloadTransform] = (),
    ):
        self.settings = settings
        self.store = store or InMemoryStore()

        self.builder = PayloadBuilder(catalog, affiliation=settings.affiliation)
        self.guard = IdempotencyGuard(self.store)
        self.transport = MeasurementProtocolClient(
            settings.measurement_id,
            settings.resolved_api_secret,
            collector_url=settings.collector_url,
            timeout=settings.timeout,
            transforms=transforms,
            http_client=http_client,
        )
        self.identity = self.transport.identity
        self.queue = DelayedDeliveryQueue(self.store, settings.anonymous_ttl_seconds)

        self.conversions = ConversionTracker(self.guard, self.builder, self.queue, settings)
        self.purchases = PurchaseTracker(self.guard, self.builder, self.transport, settings)
        self.adapters = EventSourceAdapters(self.conversions, self.purchases, settings)
        self.router = CustomEventRouter(self.transport, settings)
        self.signer = TokenSigner(settings.token_secret)

        if settings.server_side_enabled and not settings.is_server_side_ready:
            logger.warning(
                "Server-side tracking enabled but measurement ID or API secret is missing"
            )

    @classmethod
    def build(
        cls,
        settings: Settings,
        catalog: Catalog,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> "AnalyticsRelay":
        return cls(settings, catalog, store=store, http_client=http_client)

    # ------------------------------------------------------------------ #
    # Tokens handed to the page
    # ------------------------------------------------------------------ #

    def tokens_for(self, visitor: Visitor) -> Dict[str, str]:
        subject = visitor.user_id or ""
        tokens = {"custom_event": self.signer.sign(ACTION_CUSTOM_EVENT, subject)}
        if visitor.is_authenticated:
            tokens["clear_pending"] = self.signer.sign(ACTION_CLEAR_PENDING, subject)
        return tokens

    # ------------------------------------------------------------------ #
    # Delayed conversions
    # ------------------------------------------------------------------ #

    def has_anonymous_pending(self, token: str) -> bool:
        return bool(self.queue.flush_records(IdentityScope.anonymous(token)))

    def render_pending(self, visitor: Visitor, clear_url: Optional[str] = None) -> str:
        """Script that replays every conversion queued for this visitor."""
        send_to = self.settings.ads_send_to
        if not send_to:
            return ""

        records = self.queue.flush_records(*visitor.scopes)
        if not records:
            return ""

        clear_token = None
        if visitor.is_authenticated and clear_url:
            clear_token = self.signer.sign(ACTION_CLEAR_PENDING, visitor.user_id)
        return render_delayed_conversions(
            [record.payload for record in records],
            send_to,
            clear_url=clear_url,
            clear_token=clear_token,
            clear_entity_ids=[record.entity_id for record in records],
            anonymous_cookie=ANONYMOUS_COOKIE if visitor.anonymous_token else None,
        )

    def clear_pending(self, visitor: Visitor, entity_ids: Iterable[Any]) -> int:
        """Drop the conversions a rendered script reported as emitted."""
        if not visitor.is_authenticated:
            return 0
        return self.queue.remove(IdentityScope.user(visitor.user_id), entity_ids)

    def close(self) -> None:
        self.transport.close()
        self.store.close()
        logger.info("AnalyticsRelay closed")
