"""Account credentials and session tuning options."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import voluptuous as vol

from .const import (
    DEFAULT_CAPTCHA_TTL,
    DEFAULT_REFRESH_MARGIN,
    DEFAULT_REFRESH_RETRY_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_THROTTLE_ATTEMPTS,
    DEFAULT_THROTTLE_COOLDOWN,
    OPTION_CAPTCHA_TTL,
    OPTION_DEBUG_LOG,
    OPTION_REFRESH_MARGIN,
    OPTION_REFRESH_RETRY_INTERVAL,
    OPTION_REQUEST_TIMEOUT,
    OPTION_THROTTLE_ATTEMPTS,
    OPTION_THROTTLE_COOLDOWN,
    REGION_REST_OF_WORLD,
    REGIONS,
    UNIT_METRIC,
    UNITS,
)
from .services import InvalidArgumentError

_SECONDS = vol.All(vol.Coerce(float), vol.Range(min=0))

CREDENTIAL_SCHEMA = vol.Schema(
    {
        vol.Required("username"): vol.All(str, vol.Strip, vol.Length(min=1)),
        vol.Required("password"): vol.All(str, vol.Length(min=1)),
        vol.Optional("region", default=REGION_REST_OF_WORLD): vol.In(REGIONS),
        vol.Optional("unit", default=UNIT_METRIC): vol.In(UNITS),
        vol.Optional("captcha", default=None): vol.Any(None, vol.All(str, vol.Strip)),
    }
)

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(OPTION_REFRESH_MARGIN, default=DEFAULT_REFRESH_MARGIN): _SECONDS,
        vol.Optional(
            OPTION_REFRESH_RETRY_INTERVAL, default=DEFAULT_REFRESH_RETRY_INTERVAL
        ): _SECONDS,
        vol.Optional(OPTION_THROTTLE_ATTEMPTS, default=DEFAULT_THROTTLE_ATTEMPTS): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=10)
        ),
        vol.Optional(OPTION_THROTTLE_COOLDOWN, default=DEFAULT_THROTTLE_COOLDOWN): _SECONDS,
        vol.Optional(OPTION_CAPTCHA_TTL, default=DEFAULT_CAPTCHA_TTL): _SECONDS,
        vol.Optional(OPTION_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=1)
        ),
        vol.Optional(OPTION_DEBUG_LOG, default=False): bool,
    }
)


def _validate(schema: vol.Schema, data: Mapping[str, Any], what: str) -> Dict[str, Any]:
    try:
        return schema(dict(data))
    except vol.Invalid as err:
        raise InvalidArgumentError(f"Invalid {what}: {err}") from err


@dataclass(frozen=True)
class Credential:
    """Account login data; the password doubles as the at-rest encryption key."""

    username: str
    password: str
    region: str = REGION_REST_OF_WORLD
    unit: str = UNIT_METRIC
    captcha: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        return cls(**_validate(CREDENTIAL_SCHEMA, data, "credentials"))

    @property
    def account_key(self) -> str:
        return f"{self.region}:{self.username.lower()}"

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, region={self.region!r})"


@dataclass(frozen=True)
class SessionOptions:
    refresh_margin: float = DEFAULT_REFRESH_MARGIN
    refresh_retry_interval: float = DEFAULT_REFRESH_RETRY_INTERVAL
    throttle_attempts: int = DEFAULT_THROTTLE_ATTEMPTS
    throttle_cooldown: float = DEFAULT_THROTTLE_COOLDOWN
    captcha_ttl: float = DEFAULT_CAPTCHA_TTL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    debug_log: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None) -> "SessionOptions":
        return cls(**_validate(OPTIONS_SCHEMA, data or {}, "options"))
