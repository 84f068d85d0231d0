"""Holding area for conversions that must be executed in a browser.

A payment webhook or a status change runs with no browser attached, so the
captured payload is parked here and emitted on the visitor's next page
render.  Holders are keyed by scope:

* ``user`` scope    durable, survives across sessions; cleared by an
                    explicit request once the browser has run the script.
* ``anonymous``     short-lived (``anonymous_ttl`` seconds), reachable via a
                    token in the ``ga4_relay_pending`` cookie of the same
                    lifetime; left to expire.

``flush`` never removes anything: the browser run is fire-and-forget and
removal is not receipt-confirmed.  ``remove`` drops only the entity ids the
browser was handed, so a record captured after the page rendered survives
until the next render.  Every holder write goes through the store's atomic
``update``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ga4_relay.config import DEFAULT_ANONYMOUS_TTL
from ga4_relay.events import PendingConversionRecord, TriggerSource
from ga4_relay.store import KeyValueStore, order_pending_key, scope_key

logger = logging.getLogger(__name__)

ANONYMOUS_COOKIE = "ga4_relay_pending"


@dataclass(frozen=True)
class IdentityScope:
    kind: str
    id: str

    USER = "user"
    ANONYMOUS = "anonymous"

    @classmethod
    def user(cls, user_id: Any) -> "IdentityScope":
        return cls(cls.USER, str(user_id))

    @classmethod
    def anonymous(cls, token: str) -> "IdentityScope":
        return cls(cls.ANONYMOUS, str(token))

    @property
    def is_anonymous(self) -> bool:
        return self.kind == self.ANONYMOUS

    @property
    def key(self) -> str:
        return scope_key(self.kind, self.id)


class DelayedDeliveryQueue:
    def __init__(self, store: KeyValueStore, anonymous_ttl: int = DEFAULT_ANONYMOUS_TTL):
        self.store = store
        self.anonymous_ttl = anonymous_ttl

    def _ttl(self, scope: IdentityScope) -> Optional[int]:
        return self.anonymous_ttl if scope.is_anonymous else None

    def _holder(self, scope: IdentityScope) -> Dict[str, Dict[str, Any]]:
        holder = self.store.get(scope.key)
        return dict(holder) if isinstance(holder, dict) else {}

    # ------------------------------------------------------------------ #
    # Per-visitor holders
    # ------------------------------------------------------------------ #

    def enqueue(
        self,
        scope: IdentityScope,
        entity_id: Any,
        payload: Dict[str, Any],
        trigger_source: str = TriggerSource.PAYMENT_COMPLETE.value,
        captured_at: Optional[int] = None,
    ) -> PendingConversionRecord:
        record = PendingConversionRecord(
            entity_id=str(entity_id),
            payload=payload,
            trigger_source=trigger_source,
        )
        if captured_at is not None:
            record.captured_at = captured_at
        self.put(scope, record)
        return record

    def put(self, scope: IdentityScope, record: PendingConversionRecord) -> None:
        def insert(holder: Any) -> Dict[str, Any]:
            holder = dict(holder) if isinstance(holder, dict) else {}
            holder[record.entity_id] = record.to_dict()
            return holder

        self.store.update(scope.key, insert, ttl=self._ttl(scope))
        logger.debug("Queued conversion for order %s in %s", record.entity_id, scope.key)

    def records(self, scope: IdentityScope) -> List[PendingConversionRecord]:
        records = []
        for entity_id, data in self._holder(scope).items():
            try:
                records.append(PendingConversionRecord.from_dict(data))
            except (KeyError, TypeError, ValueError):
                logger.warning("Dropping malformed pending record %s in %s", entity_id, scope.key)
        return sorted(records, key=lambda r: r.captured_at)

    def flush_records(self, *scopes: IdentityScope) -> List[PendingConversionRecord]:
        """Records queued across ``scopes``, first scope winning per entity."""
        merged: List[PendingConversionRecord] = []
        seen = set()
        for scope in scopes:
            for record in self.records(scope):
                if record.entity_id not in seen:
                    seen.add(record.entity_id)
                    merged.append(record)
        return merged

    def flush(self, scope: IdentityScope) -> List[Dict[str, Any]]:
        """Payloads queued for ``scope``, oldest first; nothing is removed."""
        return [record.payload for record in self.flush_records(scope)]

    def contains(self, scope: IdentityScope, entity_id: Any) -> bool:
        return str(entity_id) in self._holder(scope)

    def clear(self, scope: IdentityScope) -> int:
        count = len(self._holder(scope))
        self.store.delete(scope.key)
        if count:
            logger.info("Cleared %d pending conversions from %s", count, scope.key)
        return count

    def remove(self, scope: IdentityScope, entity_ids: Iterable[Any]) -> int:
        """Drop the given entity ids from the holder; returns how many went."""
        wanted = {str(entity_id) for entity_id in entity_ids}
        removed: List[str] = []

        def drop(holder: Any) -> Optional[Dict[str, Any]]:
            if not isinstance(holder, dict):
                return None
            removed.extend(key for key in holder if key in wanted)
            kept = {key: value for key, value in holder.items() if key not in wanted}
            return kept or None

        self.store.update(scope.key, drop, ttl=self._ttl(scope))
        if removed:
            logger.info("Removed %d pending conversions from %s", len(removed), scope.key)
        return len(removed)

    # ------------------------------------------------------------------ #
    # Order-level records (captured before any visitor scope is known)
    # ------------------------------------------------------------------ #

    def stash_for_order(self, record: PendingConversionRecord) -> None:
        """Park a record until the buyer's thank-you page; expires like a guest holder."""
        self.store.set(
            order_pending_key(record.entity_id), record.to_dict(), ttl=self.anonymous_ttl
        )

    def take_for_order(self, entity_id: Any) -> Optional[PendingConversionRecord]:
        """Remove and return the order-level record, if any."""
        taken: List[Dict[str, Any]] = []

        def take(data: Any) -> None:
            if isinstance(data, dict):
                taken.append(data)

        self.store.update(order_pending_key(entity_id), take)
        return PendingConversionRecord.from_dict(taken[0]) if taken else None
