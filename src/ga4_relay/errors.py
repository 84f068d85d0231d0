"""Error kinds and the structured delivery result.

Delivery never raises into a page render: each public operation catches
``RelayError`` at its boundary and returns a ``SendResult`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for delivery failures."""


class ConfigurationError(RelayError):
    """Measurement id or API secret missing."""


class ValidationError(RelayError):
    """Payload or event request is malformed (no client_id, no events, no name)."""


class TransportError(RelayError):
    """Network failure or non-2xx response from the collector."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DataError(RelayError):
    """Order or product could not be resolved; permanent, never retried."""


@dataclass
class SendResult:
    """Outcome of one delivery attempt."""

    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    status_code: Optional[int] = None
    body: Optional[str] = None

    @classmethod
    def ok(cls, status_code: int) -> "SendResult":
        return cls(success=True, status_code=status_code)

    @classmethod
    def failed(cls, exc: RelayError) -> "SendResult":
        return cls(
            success=False,
            error=str(exc),
            error_type=type(exc).__name__,
            status_code=getattr(exc, "status_code", None),
            body=getattr(exc, "body", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}
