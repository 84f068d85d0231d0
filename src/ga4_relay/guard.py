"""Per-order tracking flags that stop duplicate delivery.

Two policies share one store:

* prepare flags are a plain read-then-write.  Two racing requests can both
  win, which at worst captures a browser conversion twice.
* the confirmed flag is written with the store's atomic ``add`` and only
  after the collector accepted the event.  A failed delivery leaves it
  unset so a later trigger can retry.

Flags are never cleared.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ga4_relay.events import FlagKind
from ga4_relay.store import KeyValueStore, flag_key

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def is_prepared(
        self,
        entity_id: Any,
        kind: FlagKind = FlagKind.CONVERSION_PREPARED,
    ) -> bool:
        return bool(self.store.get(flag_key(entity_id, kind)))

    def try_prepare(
        self,
        entity_id: Any,
        kind: FlagKind = FlagKind.CONVERSION_PREPARED,
    ) -> bool:
        """Set a prepare flag; True if this call is the one that set it."""
        if self.is_prepared(entity_id, kind):
            return False
        self.store.set(flag_key(entity_id, kind), int(self.clock()))
        return True

    def is_confirmed(self, entity_id: Any) -> bool:
        return bool(self.store.get(flag_key(entity_id, FlagKind.SERVER_TRACKED)))

    def mark_confirmed(self, entity_id: Any) -> bool:
        """Record a successful delivery; False if another request already did."""
        inserted = self.store.add(
            flag_key(entity_id, FlagKind.SERVER_TRACKED), int(self.clock())
        )
        if not inserted:
            logger.warning("Order %s was already marked as tracked", entity_id)
        return inserted
