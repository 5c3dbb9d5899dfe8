"""Static mapping of data types and remote commands to vendor endpoints."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

HOST_API = "api"

PARAMS_NONE = "none"
PARAMS_QUERY = "query"
PARAMS_JSON = "json"

GET_VEHICLES = "vehicles"
GET_STATE = "state"
GET_CHARGING_SETTINGS = "chargingsettings"
GET_CHARGING_SESSIONS = "chargingsessions"
GET_CHARGING_STATISTICS = "chargingstatistics"

SERVICE_FLASH_HEADLIGHTS = "RLF"
SERVICE_HORN = "RHB"
SERVICE_DOOR_LOCK = "RDL"
SERVICE_DOOR_UNLOCK = "RDU"
SERVICE_CLIMATE = "RCN"
SERVICE_CLIMATE_STOP = "RCNSTOP"
SERVICE_VEHICLE_FINDER = "RVF"
SERVICE_CHARGE_START = "CHARGESTART"
SERVICE_CHARGE_STOP = "CHARGESTOP"

# Data types served by earlier API generations; the vendor has switched them off.
RETIRED_DATA_TYPES = frozenset(
    {
        "dynamic",
        "specs",
        "navigation",
        "efficiency",
        "service",
        "servicepartner",
        "chargingprofile",
        "statistics/allTrips",
        "statistics/lastTrip",
        "status",
        "destinations",
    }
)

_VIN_PATTERN = re.compile(r"^[0-9A-HJ-NPR-Z]+$")


class UnsupportedServiceError(Exception):
    """Raised for data types the vendor no longer serves."""


class InvalidArgumentError(ValueError):
    """Raised for unknown service codes and malformed caller input."""


@dataclass(frozen=True)
class Endpoint:
    """Where and how a logical operation is sent.

    ``query`` values are templates filled from the request context
    (``vin``, ``app_date_time``, ``app_timezone``, ``current_date``).
    """

    path: str
    method: str = "GET"
    params: str = PARAMS_NONE
    host: str = HOST_API
    query: Mapping[str, str] = field(default_factory=dict)
    vin_header: bool = False
    action: Optional[str] = None


DATA_ENDPOINTS: Dict[str, Endpoint] = {
    GET_VEHICLES: Endpoint(
        "/eadrax-vcs/v4/vehicles",
        params=PARAMS_QUERY,
        query={"apptimezone": "{app_timezone}", "appDateTime": "{app_date_time}"},
    ),
    GET_STATE: Endpoint(
        "/eadrax-vcs/v4/vehicles/state",
        params=PARAMS_QUERY,
        query={"apptimezone": "{app_timezone}", "appDateTime": "{app_date_time}"},
        vin_header=True,
    ),
    GET_CHARGING_SETTINGS: Endpoint(
        "/eadrax-crccs/v2/vehicles",
        params=PARAMS_QUERY,
        query={"fields": "charging-profile", "has_charging_settings_capabilities": "true"},
        vin_header=True,
    ),
    GET_CHARGING_SESSIONS: Endpoint(
        "/eadrax-chs/v2/charging-sessions",
        params=PARAMS_QUERY,
        query={"vin": "{vin}", "maxResults": "40", "include_date_picker": "true"},
    ),
    GET_CHARGING_STATISTICS: Endpoint(
        "/eadrax-chs/v2/charging-statistics",
        params=PARAMS_QUERY,
        query={"vin": "{vin}", "currentDate": "{current_date}"},
    ),
}

_REMOTE_COMMANDS = "/eadrax-vrccs/v3/presentation/remote-commands/{vin}"

REMOTE_SERVICES: Dict[str, Endpoint] = {
    SERVICE_FLASH_HEADLIGHTS: Endpoint(f"{_REMOTE_COMMANDS}/light-flash", method="POST"),
    SERVICE_HORN: Endpoint(f"{_REMOTE_COMMANDS}/horn-blow", method="POST"),
    SERVICE_DOOR_LOCK: Endpoint(f"{_REMOTE_COMMANDS}/door-lock", method="POST"),
    SERVICE_DOOR_UNLOCK: Endpoint(f"{_REMOTE_COMMANDS}/door-unlock", method="POST"),
    SERVICE_CLIMATE: Endpoint(
        f"{_REMOTE_COMMANDS}/climate-now", method="POST", params=PARAMS_QUERY, action="START"
    ),
    SERVICE_CLIMATE_STOP: Endpoint(
        f"{_REMOTE_COMMANDS}/climate-now", method="POST", params=PARAMS_QUERY, action="STOP"
    ),
    SERVICE_VEHICLE_FINDER: Endpoint(f"{_REMOTE_COMMANDS}/vehicle-finder", method="POST"),
    SERVICE_CHARGE_START: Endpoint(
        "/eadrax-crccs/v1/vehicles/{vin}/start-charging", method="POST", params=PARAMS_JSON
    ),
    SERVICE_CHARGE_STOP: Endpoint(
        "/eadrax-crccs/v1/vehicles/{vin}/stop-charging", method="POST", params=PARAMS_JSON
    ),
}


def is_valid_vin(vin: Any) -> bool:
    """Check the VIN alphabet (digits and capitals without I, O and Q)."""

    return isinstance(vin, str) and bool(_VIN_PATTERN.match(vin))


def data_endpoint(data_type: str) -> Endpoint:
    """Return the endpoint for a data type or raise for retired/unknown ones."""

    if data_type in RETIRED_DATA_TYPES:
        raise UnsupportedServiceError(f"Data type '{data_type}' is no longer supported")
    endpoint = DATA_ENDPOINTS.get(data_type)
    if endpoint is None:
        raise InvalidArgumentError(f"Unknown data type '{data_type}'")
    return endpoint


def remote_service(code: str) -> Endpoint:
    """Return the endpoint for a remote service code."""

    endpoint = REMOTE_SERVICES.get(code)
    if endpoint is None:
        raise InvalidArgumentError(f"Unknown remote service '{code}'")
    return endpoint


def request_context(vin: Optional[str], now: Optional[datetime] = None) -> Dict[str, str]:
    """Values available to query templates."""

    local_now = (now or datetime.now(timezone.utc)).astimezone()
    offset = local_now.utcoffset()
    offset_minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    return {
        "vin": vin or "",
        "app_date_time": str(int(local_now.timestamp() * 1000)),
        "app_timezone": str(offset_minutes),
        "current_date": local_now.replace(microsecond=0).isoformat(),
    }


def build_path(
    endpoint: Endpoint,
    vin: Optional[str],
    *,
    action: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Render the request path, including any query string."""

    context = request_context(vin, now)
    path = endpoint.path.format(**context)
    query = {key: value.format(**context) for key, value in endpoint.query.items()}
    action = action or endpoint.action
    if action:
        query["action"] = action
    if query:
        path = f"{path}?{urlencode(query)}"
    return path
