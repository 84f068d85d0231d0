"""Starlette middleware that replays pending conversions on page renders.

Drop this onto the shop's ASGI app so every HTML page carries the flush
script for conversions queued for the visitor.

Usage::

    from fastapi import FastAPI
    from ga4_relay import AnalyticsRelay, PendingConversionMiddleware

    app = FastAPI()
    relay = AnalyticsRelay(settings, catalog=catalog)
    app.add_middleware(PendingConversionMiddleware, relay=relay)

Page handlers that need the visitor (e.g. the thank-you page) read it with
``visitor_from_request(request)``; the middleware has already attached an
anonymous token to it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ga4_relay.queue import ANONYMOUS_COOKIE
from ga4_relay.tracker import Visitor

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "/ga4-relay"


def visitor_from_request(request: Request) -> Visitor:
    """Default visitor resolution.

    Authentication is the host's business: it may put a ``Visitor`` on
    ``request.state.visitor``, or ``user_id`` / ``user_roles`` on
    ``request.state``.
    """
    existing = getattr(request.state, "visitor", None)
    if isinstance(existing, Visitor):
        return existing
    user_id = getattr(request.state, "user_id", None)
    roles = getattr(request.state, "user_roles", None) or ()
    return Visitor(
        user_id=str(user_id) if user_id else None,
        roles=frozenset(roles),
        cookies=dict(request.cookies),
        anonymous_token=request.cookies.get(ANONYMOUS_COOKIE),
    )


def inject_before_body_end(html: str, snippet: str) -> str:
    index = html.lower().rfind("</body>")
    if index == -1:
        return html + snippet
    return html[:index] + snippet + html[index:]


class PendingConversionMiddleware(BaseHTTPMiddleware):
    """Injects the delayed-conversion script into successful HTML pages.

    Non-GET requests and the relay's own endpoints pass through untouched.
    """

    def __init__(
        self,
        app: Any,
        relay: Any,
        resolve_visitor: Callable[[Request], Visitor] = visitor_from_request,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        super().__init__(app)
        self.relay = relay
        self.resolve_visitor = resolve_visitor
        self.prefix = prefix
        self.clear_url = f"{prefix}/pending-conversions/clear"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method != "GET" or request.url.path.startswith(self.prefix):
            return await call_next(request)

        visitor = self.resolve_visitor(request)
        new_token: Optional[str] = None
        if not visitor.anonymous_token:
            new_token = uuid.uuid4().hex
            visitor.anonymous_token = new_token
        request.state.visitor = visitor

        response = await call_next(request)

        content_type = response.headers.get("content-type", "")
        if response.status_code != 200 or "text/html" not in content_type:
            return response

        try:
            snippet = await asyncio.to_thread(
                self.relay.render_pending, visitor, self.clear_url
            )
            set_cookie = bool(new_token) and await asyncio.to_thread(
                self.relay.has_anonymous_pending, new_token
            )
        except Exception:
            logger.exception("Pending conversion rendering failed")
            return response

        if not snippet and not set_cookie:
            return response

        body_bytes = b""
        async for chunk in response.body_iterator:
            if isinstance(chunk, str):
                body_bytes += chunk.encode("utf-8")
            else:
                body_bytes += chunk

        if snippet:
            charset = response.charset or "utf-8"
            html = body_bytes.decode(charset, errors="replace")
            body_bytes = inject_before_body_end(html, snippet).encode(charset)

        new_response = Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
        )
        # Preserve all original headers including multi-value ones (e.g. set-cookie)
        new_response.raw_headers = [
            (name, value)
            for name, value in response.raw_headers
            if name.lower() != b"content-length"
        ] + [(b"content-length", str(len(body_bytes)).encode("latin-1"))]

        if set_cookie:
            new_response.set_cookie(
                ANONYMOUS_COOKIE,
                new_token,
                max_age=self.relay.settings.anonymous_ttl_seconds,
                path="/",
                samesite="lax",
            )
        return new_response
