"""Event sources that can report a purchase.

Three independent triggers may fire for the same order, in any order and
any number of times:

* payment confirmation        (gateway callback / webhook, no browser)
* status transition to paid   (manual orders, delayed payments)
* thank-you page render       (browser present, may never happen)

Each one runs the browser capture path and, when server-side delivery is
enabled, the confirmed server path.  The guards make the repeats harmless.
Adapters never raise into their caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ga4_relay.commerce import PageContext
from ga4_relay.config import Settings
from ga4_relay.errors import SendResult
from ga4_relay.events import PAID_STATUSES, TriggerSource
from ga4_relay.scripts import render_purchase_event
from ga4_relay.tracker import ConversionTracker, PurchaseTracker, Visitor

logger = logging.getLogger(__name__)


def is_paid_transition(old_status: Optional[str], new_status: Optional[str]) -> bool:
    """True only for a move from a non-paid status into a paid one."""
    return _normalize(new_status) in PAID_STATUSES and _normalize(old_status) not in PAID_STATUSES


def _normalize(status: Optional[str]) -> str:
    value = getattr(status, "value", status) or ""
    value = str(value).strip().lower()
    return value[3:] if value.startswith("wc-") else value


class EventSourceAdapters:
    def __init__(
        self,
        conversions: ConversionTracker,
        purchases: PurchaseTracker,
        settings: Settings,
    ):
        self.conversions = conversions
        self.purchases = purchases
        self.settings = settings

    def on_payment_complete(
        self, order_id: Any, visitor: Optional[Visitor] = None
    ) -> Optional[SendResult]:
        return self._capture_and_send(order_id, TriggerSource.PAYMENT_COMPLETE, visitor)

    def on_status_changed(
        self,
        order_id: Any,
        old_status: Optional[str],
        new_status: Optional[str],
        visitor: Optional[Visitor] = None,
    ) -> Optional[SendResult]:
        if not is_paid_transition(old_status, new_status):
            logger.debug(
                "Order %s: %s -> %s is not a paid transition", order_id, old_status, new_status
            )
            return None
        return self._capture_and_send(order_id, TriggerSource.STATUS_CHANGE, visitor)

    def on_thank_you(
        self,
        order_id: Any,
        visitor: Visitor,
        page: Optional[PageContext] = None,
    ) -> str:
        """Handle the order-received page; returns HTML to place in the page."""
        try:
            scope = visitor.primary_scope
            if scope is not None:
                captured = self.conversions.prepare(
                    order_id, TriggerSource.THANK_YOU.value, scope
                )
                if captured is None:
                    self.conversions.hand_off(order_id, scope)

            if self.settings.server_side_enabled:
                self.purchases.track(order_id, visitor)
                return ""

            params = self.purchases.client_purchase_params(order_id, visitor, page)
            return render_purchase_event(params) if params else ""
        except Exception:
            logger.exception("Thank-you tracking failed for order %s", order_id)
            return ""

    def _capture_and_send(
        self,
        order_id: Any,
        trigger: TriggerSource,
        visitor: Optional[Visitor],
    ) -> Optional[SendResult]:
        try:
            scope = visitor.primary_scope if visitor else None
            self.conversions.prepare(order_id, trigger.value, scope)
            if not self.settings.server_side_enabled:
                return None
            return self.purchases.track(order_id, visitor)
        except Exception:
            logger.exception("%s tracking failed for order %s", trigger.value, order_id)
            return None
