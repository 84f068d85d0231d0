"""Render the ``<script>`` snippets that hand payloads to gtag.js.

Every snippet waits for ``gtag`` with a bounded loop: a fixed interval, a
small attempt budget, then it gives up silently for that render.  Data is
embedded as JSON with ``<``, ``>`` and ``&`` escaped so it cannot close the
script element.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from ga4_relay.events import EventName

INITIAL_DELAY_MS = 2000
RETRY_INTERVAL_MS = 1000
MAX_ATTEMPTS = 10


def to_js(value: Any) -> str:
    return (
        json.dumps(value, default=str, ensure_ascii=False)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def conversion_data(payload: Dict[str, Any], send_to: str) -> Dict[str, Any]:
    """Map a purchase payload onto a Google Ads ``conversion`` event."""
    data: Dict[str, Any] = {
        "send_to": send_to,
        "transaction_id": str(payload.get("transaction_id", "")),
        "value": float(payload.get("value") or 0),
        "currency": payload.get("currency") or "",
        "tax": float(payload.get("tax") or 0),
        "shipping": float(payload.get("shipping") or 0),
        "coupon": payload.get("coupon") or "",
    }
    items = payload.get("items")
    if isinstance(items, list) and items:
        data["items"] = items
    return data


def _wrap(body: str, comment: str) -> str:
    return f"<!-- {comment} -->\n<script>\n{body}\n</script>\n"


def _polling_loop(calls_js: str, initial_delay_ms: int) -> str:
    return f"""(function() {{
  var attempts = 0;
  function run() {{
    if (typeof gtag === 'undefined') {{
      attempts++;
      if (attempts < {MAX_ATTEMPTS}) {{
        setTimeout(run, {RETRY_INTERVAL_MS});
      }}
      return;
    }}
{calls_js}
  }}
  setTimeout(run, {initial_delay_ms});
}})();"""


def render_event(event_name: str, params: Dict[str, Any]) -> str:
    """Emit one gtag event once gtag.js is available."""
    calls = f"    gtag('event', {to_js(event_name)}, {to_js(params)});"
    return _wrap(_polling_loop(calls, 0), f"ga4-relay {event_name}")


def render_purchase_event(params: Dict[str, Any]) -> str:
    return render_event(EventName.PURCHASE.value, params)


def render_delayed_conversions(
    payloads: Iterable[Dict[str, Any]],
    send_to: str,
    *,
    clear_url: Optional[str] = None,
    clear_token: Optional[str] = None,
    clear_entity_ids: Iterable[Any] = (),
    anonymous_cookie: Optional[str] = None,
) -> str:
    """Emit queued conversions, then ask the server to drop the emitted ones."""
    conversions: List[Dict[str, Any]] = [conversion_data(p, send_to) for p in payloads]
    if not conversions:
        return ""

    lines = [
        f"    var pending = {to_js(conversions)};",
        "    for (var i = 0; i < pending.length; i++) {",
        f"      gtag('event', {to_js(EventName.CONVERSION.value)}, pending[i]);",
        "    }",
    ]
    if clear_url and clear_token:
        lines += [
            "    if (typeof fetch !== 'undefined') {",
            f"      fetch({to_js(clear_url)}, {{",
            "        method: 'POST',",
            "        credentials: 'same-origin',",
            "        headers: {'Content-Type': 'application/json'},",
            "        body: JSON.stringify({"
            f"token: {to_js(clear_token)}, "
            f"entity_ids: {to_js([str(e) for e in clear_entity_ids])}}})",
            "      });",
            "    }",
        ]
    if anonymous_cookie:
        lines.append(
            f"    document.cookie = {to_js(anonymous_cookie)} + "
            "'=; expires=Thu, 01 Jan 1970 00:00:00 UTC; path=/;';"
        )
    return _wrap(
        _polling_loop("\n".join(lines), INITIAL_DELAY_MS),
        "ga4-relay delayed conversions",
    )
