"""Relay settings.

Settings are produced by an external administration surface and are
read-only here.  ``from_mapping`` accepts the option names that surface
stores; ``from_env`` reads ``GA4_RELAY_*`` variables for deployments that
configure through the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Mapping, Optional

DEFAULT_COLLECTOR_URL = "https://www.google-analytics.com/mp/collect"
DEFAULT_TIMEOUT = 5.0
DEFAULT_ANONYMOUS_TTL = 3600

_TRUTHY = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _as_roles(value: Any) -> FrozenSet[str]:
    # A single selected role may be stored as a plain string.
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(str(role).strip() for role in value if str(role).strip())


@dataclass(frozen=True)
class Settings:
    measurement_id: str = ""
    api_secret: str = ""
    api_secret_fallback: str = ""
    server_side_enabled: bool = False
    excluded_roles: FrozenSet[str] = field(default_factory=frozenset)
    purchase_event_enabled: bool = True
    ads_conversion_id: str = ""
    ads_purchase_label: str = ""
    affiliation: str = ""
    collector_url: str = DEFAULT_COLLECTOR_URL
    timeout: float = DEFAULT_TIMEOUT
    token_secret: str = ""
    anonymous_ttl_seconds: int = DEFAULT_ANONYMOUS_TTL

    @property
    def resolved_api_secret(self) -> str:
        """Primary secret, falling back to the secondary field."""
        return self.api_secret or self.api_secret_fallback

    @property
    def is_server_side_ready(self) -> bool:
        return bool(self.measurement_id and self.resolved_api_secret)

    @property
    def ads_send_to(self) -> Optional[str]:
        if not self.ads_conversion_id or not self.ads_purchase_label:
            return None
        return f"AW-{self.ads_conversion_id}/{self.ads_purchase_label}"

    def is_excluded(self, roles: Iterable[str]) -> bool:
        return bool(self.excluded_roles.intersection(roles))

    # ------------------------------------------------------------------ #
    # Loaders
    # ------------------------------------------------------------------ #

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "Settings":
        """Build settings from a stored options mapping."""
        return cls(
            measurement_id=str(options.get("measurement_id") or "").strip(),
            api_secret=str(options.get("measurement_protocol_api_secret") or "").strip(),
            api_secret_fallback=str(
                options.get("measurement_protocol_api_secret_select") or ""
            ).strip(),
            server_side_enabled=_as_bool(options.get("server_side_tracking", False)),
            excluded_roles=_as_roles(options.get("exclude_roles")),
            purchase_event_enabled=_as_bool(options.get("purchase_event", True)),
            ads_conversion_id=str(options.get("conversion_id") or "").strip(),
            ads_purchase_label=str(options.get("purchase_conversion_label") or "").strip(),
            affiliation=str(options.get("affiliation") or ""),
            collector_url=str(options.get("collector_url") or DEFAULT_COLLECTOR_URL),
            timeout=float(options.get("timeout") or DEFAULT_TIMEOUT),
            token_secret=str(options.get("token_secret") or ""),
            anonymous_ttl_seconds=int(
                options.get("anonymous_ttl_seconds") or DEFAULT_ANONYMOUS_TTL
            ),
        )

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = "GA4_RELAY_",
    ) -> "Settings":
        """Build settings from ``GA4_RELAY_*`` environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str, default: Any = None) -> Any:
            return env.get(prefix + name, default)

        return cls.from_mapping(
            {
                "measurement_id": get("MEASUREMENT_ID"),
                "measurement_protocol_api_secret": get("API_SECRET"),
                "measurement_protocol_api_secret_select": get("API_SECRET_FALLBACK"),
                "server_side_tracking": get("SERVER_SIDE", False),
                "exclude_roles": get("EXCLUDE_ROLES"),
                "purchase_event": get("PURCHASE_EVENT", True),
                "conversion_id": get("ADS_CONVERSION_ID"),
                "purchase_conversion_label": get("ADS_PURCHASE_LABEL"),
                "affiliation": get("AFFILIATION"),
                "collector_url": get("COLLECTOR_URL"),
                "timeout": get("TIMEOUT"),
                "token_secret": get("TOKEN_SECRET"),
                "anonymous_ttl_seconds": get("ANONYMOUS_TTL"),
            }
        )
