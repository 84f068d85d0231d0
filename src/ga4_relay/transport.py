"""GA4 Measurement Protocol client.

One blocking POST per event, short fixed timeout, no internal retry.  A
failure is reported in the returned ``SendResult``; retrying is left to the
next independent trigger.

Usage::

    client = MeasurementProtocolClient("G-ABC123", "secret")
    result = client.send(
        "purchase",
        {"transaction_id": "1001", "value": 42.0, "currency": "EUR"},
        DeliveryContext(cookies=request.cookies, user_id=7),
    )
    if result.success:
        ...
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import httpx

from ga4_relay.config import DEFAULT_COLLECTOR_URL, DEFAULT_TIMEOUT
from ga4_relay.errors import (
    ConfigurationError,
    RelayError,
    SendResult,
    TransportError,
    ValidationError,
)
from ga4_relay.events import Event
from ga4_relay.identity import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class DeliveryContext:
    """Per-request inputs to one delivery.

    ``client_id`` / ``session_id`` override the cookie-derived identity.
    ``order_created_at`` wins over ``timestamp``, which wins over now.
    """

    cookies: Dict[str, str] = field(default_factory=dict)
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[Union[int, str]] = None
    order_created_at: Optional[datetime] = None
    timestamp: Optional[Union[int, float, datetime]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


PayloadTransform = Callable[[Dict[str, Any], DeliveryContext], Dict[str, Any]]


class MeasurementProtocolClient:
    MEASUREMENT_ID_RE = re.compile(r"^G-[A-Z0-9]+$", re.IGNORECASE)
    DEFAULT_ENGAGEMENT_TIME_MSEC = 100
    USER_ID_PREFIX = "user_"

    def __init__(
        self,
        measurement_id: str,
        api_secret: str,
        *,
        collector_url: str = DEFAULT_COLLECTOR_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transforms: Iterable[PayloadTransform] = (),
        http_client: Optional[httpx.Client] = None,
    ):
        self.measurement_id = measurement_id
        self.api_secret = api_secret
        self.collector_url = collector_url
        self.timeout = timeout
        self.identity = IdentityResolver(measurement_id)
        self._transforms: List[PayloadTransform] = list(transforms)
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

        if measurement_id and not self.MEASUREMENT_ID_RE.match(measurement_id):
            logger.error(
                "Invalid measurement ID format: %s. Expected format: G-XXXXXXXXXX",
                measurement_id,
            )

    # ------------------------------------------------------------------ #
    # Extension point
    # ------------------------------------------------------------------ #

    def add_transform(self, transform: PayloadTransform) -> None:
        """Register a callback that receives and returns the full payload."""
        self._transforms.append(transform)

    def _apply_transforms(
        self, payload: Dict[str, Any], context: DeliveryContext
    ) -> Dict[str, Any]:
        for transform in self._transforms:
            try:
                payload = transform(payload, context)
            except Exception:
                logger.exception("Payload transform %r failed; skipped", transform)
        return payload

    # ------------------------------------------------------------------ #
    # Payload assembly
    # ------------------------------------------------------------------ #

    def build_payload(
        self,
        event_name: str,
        params: Dict[str, Any],
        context: Optional[DeliveryContext] = None,
    ) -> Dict[str, Any]:
        context = context or DeliveryContext()
        identity = self.identity.resolve(
            context.cookies,
            client_id=context.client_id,
            session_id=context.session_id,
        )

        event_params: Dict[str, Any] = {
            "engagement_time_msec": self.DEFAULT_ENGAGEMENT_TIME_MSEC,
            **params,
        }
        if identity.session_id:
            event_params["session_id"] = identity.session_id

        payload: Dict[str, Any] = {
            "client_id": identity.client_id,
            "events": [Event(event_name, event_params).to_wire()],
        }
        user_id = self.namespaced_user_id(context.user_id)
        if user_id:
            payload["user_id"] = user_id
        payload["timestamp_micros"] = self.timestamp_micros(context)

        return self._apply_transforms(payload, context)

    @classmethod
    def namespaced_user_id(cls, user_id: Optional[Union[int, str]]) -> Optional[str]:
        if user_id is None or user_id == "" or user_id == 0:
            return None
        value = str(user_id)
        if value.startswith(cls.USER_ID_PREFIX):
            return value
        return cls.USER_ID_PREFIX + value

    @staticmethod
    def timestamp_micros(context: DeliveryContext) -> str:
        if context.order_created_at is not None:
            return str(int(context.order_created_at.timestamp()) * 1_000_000)
        stamp = context.timestamp
        if isinstance(stamp, datetime):
            return str(int(stamp.timestamp() * 1_000_000))
        if isinstance(stamp, (int, float)) and not isinstance(stamp, bool) and stamp:
            return str(int(stamp * 1_000_000))
        return str(int(time.time() * 1_000_000))

    # ------------------------------------------------------------------ #
    # Delivery
    # ------------------------------------------------------------------ #

    def send(
        self,
        event_name: str,
        params: Dict[str, Any],
        context: Optional[DeliveryContext] = None,
    ) -> SendResult:
        """Build and deliver a single event."""
        try:
            self._check_configured()
            if not event_name:
                raise ValidationError("Event name is required")
        except RelayError as exc:
            logger.error("Event %r not sent: %s", event_name, exc)
            return SendResult.failed(exc)
        return self.send_payload(self.build_payload(event_name, params, context))

    def send_payload(self, payload: Dict[str, Any]) -> SendResult:
        """POST a fully assembled payload to the collector."""
        try:
            self._check_configured()
            self._validate(payload)
            response = self._http.post(
                self.collector_url,
                params={
                    "measurement_id": self.measurement_id,
                    "api_secret": self.api_secret,
                },
                content=json.dumps(payload, default=str),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(
                "HTTP request to collector failed (%s): %s", type(exc).__name__, exc
            )
            return SendResult.failed(TransportError(str(exc) or type(exc).__name__))
        except RelayError as exc:
            logger.error("Payload not sent (%s): %s", type(exc).__name__, exc)
            return SendResult.failed(exc)

        if not 200 <= response.status_code < 300:
            logger.error(
                "GA4 collector error (HTTP %d): %s", response.status_code, response.text
            )
            return SendResult.failed(
                TransportError(
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    body=response.text,
                )
            )

        logger.debug(
            "Delivered %s to collector (HTTP %d)",
            [e.get("name") for e in payload.get("events", [])],
            response.status_code,
        )
        return SendResult.ok(response.status_code)

    def _check_configured(self) -> None:
        if not self.api_secret:
            raise ConfigurationError("API secret not configured")
        if not self.measurement_id:
            raise ConfigurationError("Measurement ID not configured")

    @staticmethod
    def _validate(payload: Dict[str, Any]) -> None:
        if not payload.get("client_id"):
            raise ValidationError("Missing client_id")
        events = payload.get("events")
        if not events or not isinstance(events, list):
            raise ValidationError("Invalid events")

    def close(self) -> None:
        if self._owns_client:
            self._http.close()
