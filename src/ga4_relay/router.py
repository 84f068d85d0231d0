"""Route ad hoc browser events to server-side or client-side delivery."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ga4_relay.config import Settings
from ga4_relay.errors import ValidationError
from ga4_relay.transport import DeliveryContext, MeasurementProtocolClient

logger = logging.getLogger(__name__)

MAX_PARAM_DEPTH = 10

TRACKED_SERVER = "server"
TRACKED_CLIENT = "client"

_KEY_RE = re.compile(r"[^a-z0-9_\-]")
_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SPACE_RE = re.compile(r"\s+")


def sanitize_key(key: Any) -> str:
    return _KEY_RE.sub("", str(key).lower())


def sanitize_text(value: Any) -> str:
    text = _TAG_RE.sub("", str(value))
    text = _CONTROL_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip()


def sanitize_params(value: Any, depth: int = 0) -> Any:
    """Recursively clean event params.

    Branches nested deeper than ``MAX_PARAM_DEPTH`` are replaced with an
    empty value of the same shape instead of failing the event.
    """
    if depth > MAX_PARAM_DEPTH:
        if isinstance(value, dict):
            return {}
        if isinstance(value, (list, tuple)):
            return []
        return ""

    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            clean_key = sanitize_key(key)
            if clean_key:
                cleaned[clean_key] = sanitize_params(item, depth + 1)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize_params(item, depth + 1) for item in value]
    if isinstance(value, (bool, int, float)):
        return value
    if value is None:
        return ""
    return sanitize_text(value)


def decode_event_params(raw: Any) -> Dict[str, Any]:
    """Accept params as a JSON object string or a mapping; anything else is empty."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)) and raw:
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable event params")
            return {}
        if isinstance(decoded, dict):
            return decoded
    return {}


@dataclass
class RouteResult:
    tracked: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_response(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": {"tracked": self.tracked, "data": self.data}}
        return {
            "success": False,
            "message": "Failed to track custom event",
            "error": self.error,
        }


class CustomEventRouter:
    def __init__(self, transport: MeasurementProtocolClient, settings: Settings):
        self.transport = transport
        self.settings = settings

    def route(
        self,
        event_name: str,
        raw_params: Any,
        context: Optional[DeliveryContext] = None,
    ) -> RouteResult:
        name = sanitize_text(event_name or "")
        if not name:
            raise ValidationError("Event name is required")

        params = sanitize_params(decode_event_params(raw_params))

        if not self.settings.server_side_enabled:
            return RouteResult(tracked=TRACKED_CLIENT, data=params)

        context = context or DeliveryContext()
        context.extra.setdefault("event_type", "custom")
        result = self.transport.send(name, params, context)
        if not result.success:
            logger.error(
                "Failed to track custom event %s: %s",
                name,
                result.error or "Unknown error",
            )
            return RouteResult(tracked=None, data=params, error=result.error or "Unknown error")
        return RouteResult(tracked=TRACKED_SERVER, data=params)
