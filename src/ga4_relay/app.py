"""FastAPI endpoints: browser custom events, pending clear, order webhooks.

Usage::

    from ga4_relay import AnalyticsRelay, Settings, create_app

    relay = AnalyticsRelay.build(Settings.from_env(), catalog=catalog)
    app = create_app(relay)

Or mount the routes on an existing app with ``app.include_router(
build_router(relay))``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from ga4_relay.errors import ValidationError
from ga4_relay.middleware import DEFAULT_PREFIX, visitor_from_request
from ga4_relay.relay import (
    ACTION_CLEAR_PENDING,
    ACTION_CUSTOM_EVENT,
    ACTION_ORDER_WEBHOOK,
    AnalyticsRelay,
)
from ga4_relay.tracker import Visitor
from ga4_relay.transport import DeliveryContext

logger = logging.getLogger(__name__)

WEBHOOK_TOKEN_HEADER = "X-Relay-Token"
WEBHOOK_PAYMENT_COMPLETE = "payment_complete"
WEBHOOK_STATUS_CHANGED = "status_changed"


def _error(message: str, status_code: int, error: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_router(
    relay: AnalyticsRelay,
    resolve_visitor: Callable[[Request], Visitor] = visitor_from_request,
    prefix: str = DEFAULT_PREFIX,
) -> APIRouter:
    router = APIRouter(prefix=prefix)

    @router.post("/custom-event")
    async def custom_event(request: Request) -> JSONResponse:
        body = await _json_body(request)
        visitor = resolve_visitor(request)
        if not relay.signer.verify(
            body.get("token"), ACTION_CUSTOM_EVENT, visitor.user_id or ""
        ):
            return _error("Invalid token", 403)

        context = DeliveryContext(cookies=dict(visitor.cookies), user_id=visitor.user_id)
        try:
            result = await asyncio.to_thread(
                relay.router.route,
                body.get("event_name") or "",
                body.get("event_params"),
                context,
            )
        except ValidationError as exc:
            return _error("Invalid custom event", 400, str(exc))
        return JSONResponse(result.to_response())

    @router.post("/pending-conversions/clear")
    async def clear_pending(request: Request) -> JSONResponse:
        body = await _json_body(request)
        visitor = resolve_visitor(request)
        if not visitor.is_authenticated:
            return _error("User not logged in", 401)
        if not relay.signer.verify(body.get("token"), ACTION_CLEAR_PENDING, visitor.user_id):
            return _error("Invalid token", 403)

        entity_ids = body.get("entity_ids")
        if not isinstance(entity_ids, list):
            return _error("entity_ids is required", 400)

        count = await asyncio.to_thread(relay.clear_pending, visitor, entity_ids)
        return JSONResponse(
            {
                "success": True,
                "data": {"cleared": True, "count": count, "user_id": visitor.user_id},
            }
        )

    @router.post("/webhooks/order")
    async def order_webhook(request: Request) -> JSONResponse:
        token = request.headers.get(WEBHOOK_TOKEN_HEADER)
        if not relay.signer.verify(token, ACTION_ORDER_WEBHOOK):
            return _error("Invalid token", 403)

        body = await _json_body(request)
        order_id = body.get("order_id")
        event = body.get("event")
        if not order_id:
            return _error("order_id is required", 400)

        if event == WEBHOOK_PAYMENT_COMPLETE:
            result = await asyncio.to_thread(relay.adapters.on_payment_complete, order_id)
        elif event == WEBHOOK_STATUS_CHANGED:
            result = await asyncio.to_thread(
                relay.adapters.on_status_changed,
                order_id,
                body.get("old_status"),
                body.get("new_status"),
            )
        else:
            return _error(f"Unknown event: {event}", 400)

        logger.info("Order webhook %s handled for order %s", event, order_id)
        return JSONResponse(
            {
                "success": True,
                "data": {
                    "order_id": order_id,
                    "delivery": result.to_dict() if result else None,
                },
            }
        )

    return router


def create_app(
    relay: AnalyticsRelay,
    resolve_visitor: Callable[[Request], Visitor] = visitor_from_request,
    prefix: str = DEFAULT_PREFIX,
) -> FastAPI:
    app = FastAPI(title="ga4-relay")
    app.include_router(build_router(relay, resolve_visitor, prefix))
    app.state.relay = relay
    return app
