"""Purchase and conversion trackers — the two delivery paths for an order.

``PurchaseTracker`` is the server path: build the purchase, POST it to the
Measurement Protocol, mark the order confirmed only when the collector
accepted it.  ``ConversionTracker`` is the browser path: capture the
payload once and park it until a page render can execute it.

Both are driven by the event source adapters; neither raises on delivery
failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from ga4_relay.commerce import PageContext
from ga4_relay.config import Settings
from ga4_relay.errors import SendResult
from ga4_relay.events import EventName, FlagKind, PendingConversionRecord
from ga4_relay.guard import IdempotencyGuard
from ga4_relay.payload import PayloadBuilder
from ga4_relay.queue import DelayedDeliveryQueue, IdentityScope
from ga4_relay.transport import DeliveryContext, MeasurementProtocolClient

logger = logging.getLogger(__name__)


@dataclass
class Visitor:
    """Who is behind the current request, if anyone."""

    user_id: Optional[str] = None
    roles: FrozenSet[str] = frozenset()
    cookies: Dict[str, str] = field(default_factory=dict)
    anonymous_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def scopes(self) -> List[IdentityScope]:
        scopes = []
        if self.is_authenticated:
            scopes.append(IdentityScope.user(self.user_id))
        if self.anonymous_token:
            scopes.append(IdentityScope.anonymous(self.anonymous_token))
        return scopes

    @property
    def primary_scope(self) -> Optional[IdentityScope]:
        scopes = self.scopes
        return scopes[0] if scopes else None


class PurchaseTracker:
    """Server-side purchase delivery guarded by the confirmed flag."""

    def __init__(
        self,
        guard: IdempotencyGuard,
        builder: PayloadBuilder,
        transport: MeasurementProtocolClient,
        settings: Settings,
    ):
        self.guard = guard
        self.builder = builder
        self.transport = transport
        self.settings = settings

    def is_excluded(self, visitor: Optional[Visitor]) -> bool:
        return visitor is not None and self.settings.is_excluded(visitor.roles)

    def track(self, order_id: Any, visitor: Optional[Visitor] = None) -> Optional[SendResult]:
        """Send the purchase for ``order_id`` unless it was already confirmed.

        Returns None when nothing was attempted.
        """
        if self.guard.is_confirmed(order_id):
            return None
        if self.is_excluded(visitor):
            logger.info("Order %s: visitor role excluded from tracking", order_id)
            return None

        order = self.builder.catalog.get_order(order_id)
        if order is None:
            logger.error("Failed to get order #%s", order_id)
            return None
        params = self.builder.build_server_params(order_id)
        if params is None:
            logger.error("Failed to get purchase data for order #%s", order_id)
            return None

        context = DeliveryContext(
            cookies=dict(visitor.cookies) if visitor else {},
            user_id=(
                visitor.user_id
                if visitor and visitor.is_authenticated
                else order.customer_id
            ),
            order_created_at=order.created_at,
            extra={"order_id": order_id},
        )
        result = self.transport.send(EventName.PURCHASE.value, params, context)

        if result.success:
            self.guard.mark_confirmed(order_id)
            logger.info("Order %s purchase delivered server-side", order_id)
        else:
            logger.error(
                "Failed to track order #%s: %s (%s)",
                order_id,
                result.error or "Unknown error",
                result.error_type,
            )
        return result

    # ------------------------------------------------------------------ #
    # Browser-side purchase (server-side delivery disabled)
    # ------------------------------------------------------------------ #

    def should_render_client_purchase(
        self, order_id: Any, visitor: Optional[Visitor] = None
    ) -> bool:
        if self.settings.server_side_enabled or not self.settings.purchase_event_enabled:
            return False
        if self.is_excluded(visitor):
            return False
        # Delivered server-side while the setting was on; do not report twice.
        return not self.guard.is_confirmed(order_id)

    def client_purchase_params(
        self,
        order_id: Any,
        visitor: Optional[Visitor] = None,
        page: Optional[PageContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """Params for a browser ``purchase`` event, at most once per order."""
        if not self.should_render_client_purchase(order_id, visitor):
            return None
        if self.guard.is_prepared(order_id, FlagKind.CLIENT_PURCHASE_RENDERED):
            return None
        payload = self.builder.build_purchase_payload(order_id, page)
        if payload is None:
            return None
        if not self.guard.try_prepare(order_id, FlagKind.CLIENT_PURCHASE_RENDERED):
            return None
        return payload.to_params()


class ConversionTracker:
    """Browser conversion capture guarded by the prepare flag."""

    def __init__(
        self,
        guard: IdempotencyGuard,
        builder: PayloadBuilder,
        queue: DelayedDeliveryQueue,
        settings: Settings,
    ):
        self.guard = guard
        self.builder = builder
        self.queue = queue
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.ads_send_to is not None

    def prepare(
        self,
        order_id: Any,
        trigger_source: str,
        scope: Optional[IdentityScope] = None,
    ) -> Optional[PendingConversionRecord]:
        """Capture the conversion payload once per order.

        The record goes to ``scope`` if given, else to the customer's
        holder, else to an order-level record for a later hand-off.
        """
        if not order_id or not self.enabled:
            return None
        if self.guard.is_prepared(order_id):
            return None

        payload = self.builder.build_purchase_payload(order_id)
        if payload is None:
            return None
        if not self.guard.try_prepare(order_id):
            return None

        record = PendingConversionRecord(
            entity_id=str(order_id),
            payload=payload.to_params(),
            trigger_source=trigger_source,
        )
        order = self.builder.catalog.get_order(order_id)
        if scope is None and order is not None and order.customer_id:
            scope = IdentityScope.user(order.customer_id)

        if scope is not None:
            self.queue.put(scope, record)
        else:
            self.queue.stash_for_order(record)
        logger.info(
            "Order %s conversion captured by %s for %s",
            order_id,
            trigger_source,
            scope.key if scope else "order hand-off",
        )
        return record

    def hand_off(self, order_id: Any, scope: IdentityScope) -> bool:
        """Move an order-level record into the current visitor's holder."""
        record = self.queue.take_for_order(order_id)
        if record is None:
            return False
        if not self.queue.contains(scope, record.entity_id):
            self.queue.put(scope, record)
        return True
