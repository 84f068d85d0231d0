"""Resolve GA4 client and session identifiers from browser cookies.

gtag.js writes two first-party cookies::

    _ga               GA1.1.1234567890.1699999999
    _ga_<MEASUREMENT> GS1.1.1700000000.3.1.1700000100.0.0.0   (dot format)
                      GS2.1.s1700000000$o3$g1$t1700000100     (dollar format)

``CookieParser`` understands that grammar and nothing else; it has no
knowledge of requests.  ``IdentityResolver`` applies it to a cookie mapping
and falls back to generating a fresh client id.
"""

from __future__ import annotations

import logging
import random
import re
import time
from typing import Mapping, Optional

from ga4_relay.events import ClientIdentity

logger = logging.getLogger(__name__)

CLIENT_COOKIE = "_ga"


class CookieParser:
    """Pure parsing of the ``_ga`` / ``_ga_<id>`` cookie values."""

    CLIENT_ID_RE = re.compile(r"^GA\d\.\d\.(\d+\.\d+)$")
    SESSION_DOT_RE = re.compile(r"^GS\d\.\d\.(\d+)\.")
    SESSION_DOLLAR_RE = re.compile(r"\$s(\d+)")

    @classmethod
    def parse_client_id(cls, value: Optional[str]) -> Optional[str]:
        """Return ``<random>.<timestamp>`` from a ``_ga`` value, or None."""
        if not value:
            return None
        match = cls.CLIENT_ID_RE.match(value.strip())
        return match.group(1) if match else None

    @classmethod
    def parse_session_id(cls, value: Optional[str]) -> Optional[str]:
        """Return the session id from either session cookie format, or None."""
        if not value:
            return None
        value = value.strip()
        match = cls.SESSION_DOT_RE.match(value)
        if match:
            return match.group(1)
        match = cls.SESSION_DOLLAR_RE.search(value)
        if match:
            return match.group(1)
        return None

    @classmethod
    def session_cookie_name(cls, measurement_id: str) -> str:
        return "_ga_" + measurement_id.replace("G-", "", 1)

    @classmethod
    def generate_client_id(
        cls,
        now: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> str:
        """Generate a client id in the format gtag.js uses."""
        rng = rng or random
        stamp = int(now if now is not None else time.time())
        return f"{rng.randint(1_000_000_000, 9_999_999_999)}.{stamp}"

    @classmethod
    def format_client_cookie(cls, client_id: str, version: int = 1, depth: int = 1) -> str:
        """Build a ``_ga`` value carrying ``client_id``."""
        return f"GA{version}.{depth}.{client_id}"


class IdentityResolver:
    """Derive the ``ClientIdentity`` for one delivery."""

    def __init__(self, measurement_id: str = ""):
        self.measurement_id = measurement_id

    def resolve(
        self,
        cookies: Optional[Mapping[str, str]] = None,
        *,
        client_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ClientIdentity:
        cookies = cookies or {}
        return ClientIdentity(
            client_id=client_id or self.resolve_client_id(cookies),
            session_id=session_id or self.resolve_session_id(cookies),
        )

    def resolve_client_id(self, cookies: Mapping[str, str]) -> str:
        raw = cookies.get(CLIENT_COOKIE)
        if raw:
            client_id = CookieParser.parse_client_id(raw)
            if client_id:
                return client_id
            logger.error("Unexpected %s cookie format: %s", CLIENT_COOKIE, raw)
        return CookieParser.generate_client_id()

    def resolve_session_id(self, cookies: Mapping[str, str]) -> Optional[str]:
        if not self.measurement_id:
            return None
        name = CookieParser.session_cookie_name(self.measurement_id)
        raw = cookies.get(name)
        if not raw:
            return None
        session_id = CookieParser.parse_session_id(raw)
        if session_id is None:
            logger.error("Could not extract session_id from cookie %s: %s", name, raw)
        return session_id
