"""Event types and data model for purchase and custom event delivery.

Payload shapes follow the GA4 ecommerce ``purchase`` event as accepted by
both gtag.js and the Measurement Protocol, so the same payload can be
delivered server-side or handed to the browser.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventName(str, Enum):
    """Event names the relay emits on its own."""

    PURCHASE = "purchase"
    CONVERSION = "conversion"


class OrderStatus(str, Enum):
    """Order statuses relevant to purchase reporting."""

    PENDING = "pending"
    ON_HOLD = "on-hold"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"


PAID_STATUSES = frozenset({OrderStatus.PROCESSING.value, OrderStatus.COMPLETED.value})


class FlagKind(str, Enum):
    """Per-order tracking flags.

    ``CONVERSION_PREPARED`` and ``CLIENT_PURCHASE_RENDERED`` are prepare
    flags: set before delivery, read-then-write.  ``SERVER_TRACKED`` is the
    confirmed flag: set only after the collector accepted the event, with an
    atomic insert-if-absent.
    """

    CONVERSION_PREPARED = "conversion_prepared"
    CLIENT_PURCHASE_RENDERED = "client_purchase_rendered"
    SERVER_TRACKED = "server_tracked"


class TriggerSource(str, Enum):
    """Which event source captured a pending conversion."""

    PAYMENT_COMPLETE = "payment_complete"
    STATUS_CHANGE = "status_change"
    THANK_YOU = "thank_you"


# ---------------------------------------------------------------------------
# Event data classes
# ---------------------------------------------------------------------------


def _now_micros() -> int:
    return int(time.time() * 1_000_000)


def _json_number(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


@dataclass
class Event:
    """A named analytics event with its parameters."""

    name: str
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp_micros: int = field(default_factory=_now_micros)

    def to_wire(self) -> Dict[str, Any]:
        return {"name": self.name, "params": self.params}


@dataclass
class Item:
    """One purchased line, GA4 ``items[]`` shape."""

    item_id: str
    item_name: str = ""
    item_category: str = ""
    price: Optional[Decimal] = None  # omitted for grouped products
    item_variant: Optional[str] = None
    quantity: int = 1
    discount: Optional[Decimal] = None  # client path only

    def to_params(self, *, include_discount: bool = True) -> Dict[str, Any]:
        row = {k: _json_number(v) for k, v in self.__dict__.items() if v is not None}
        if not include_discount:
            row.pop("discount", None)
        return row


@dataclass
class PurchasePayload:
    """Parameters of a ``purchase`` event for one order."""

    transaction_id: str
    value: Decimal
    currency: str
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    coupon: str = ""
    affiliation: str = ""
    payment_type: str = ""
    items: List[Item] = field(default_factory=list)

    def to_params(self, *, include_discount: bool = True) -> Dict[str, Any]:
        """Serialize to a JSON-ready dict (drop None fields, Decimals as floats)."""
        params: Dict[str, Any] = {
            k: _json_number(v)
            for k, v in self.__dict__.items()
            if k != "items" and v is not None
        }
        params["items"] = [
            item.to_params(include_discount=include_discount) for item in self.items
        ]
        return params


@dataclass(frozen=True)
class ClientIdentity:
    """Visitor identity used for one delivery."""

    client_id: str
    session_id: Optional[str] = None


@dataclass
class PendingConversionRecord:
    """A captured purchase payload waiting to be executed in a browser."""

    entity_id: str
    payload: Dict[str, Any]
    captured_at: int = field(default_factory=lambda: int(time.time()))
    trigger_source: str = TriggerSource.PAYMENT_COMPLETE.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "payload": self.payload,
            "captured_at": self.captured_at,
            "trigger_source": self.trigger_source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingConversionRecord":
        return cls(
            entity_id=str(data["entity_id"]),
            payload=dict(data.get("payload") or {}),
            captured_at=int(data.get("captured_at") or 0),
            trigger_source=str(data.get("trigger_source") or ""),
        )
