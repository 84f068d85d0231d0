"""Signed per-action request tokens for the browser-facing endpoints."""

from __future__ import annotations

import hashlib
import hmac
from typing import Any


class TokenSigner:
    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def sign(self, action: str, subject: Any = "") -> str:
        message = f"{action}:{subject}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, token: Any, action: str, subject: Any = "") -> bool:
        if not self._secret or not isinstance(token, str) or not token:
            return False
        return hmac.compare_digest(token, self.sign(action, subject))
