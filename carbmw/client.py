"""Authenticated access to the BMW ConnectedDrive API."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from .auth import AuthNegotiator
from .config import Credential, SessionOptions
from .const import (
    API_HOSTS,
    IDENTITY_PROVIDER,
    REGION_REST_OF_WORLD,
    UNIT_METRIC,
    UNIT_PREFERENCES,
    USER_AGENT,
    USER_AGENT_REGIONS,
    X_USER_AGENT,
)
from .debug import debug_enabled, mask, set_debug_enabled
from .decode import DecodeError, decode_body
from .services import (
    GET_VEHICLES,
    HOST_API,
    PARAMS_JSON,
    Endpoint,
    InvalidArgumentError,
    build_path,
    data_endpoint,
    is_valid_vin,
    remote_service,
)
from .session import Session
from .store import MemoryTokenStore, TokenStore
from .transport import AiohttpTransport, HttpResponse, HttpStatusError, Transport

_LOGGER = logging.getLogger(__name__)


class BmwClient:
    """Client for one ConnectedDrive account.

    Every call first obtains a usable token from the account ``Session``
    (logging in or refreshing as needed) and then issues the request once.
    Failures of the request itself never trigger re-authentication.
    """

    def __init__(
        self,
        username: str,
        password: str,
        *,
        region: str = REGION_REST_OF_WORLD,
        unit: str = UNIT_METRIC,
        captcha: Optional[str] = None,
        store: Optional[TokenStore] = None,
        transport: Optional[Transport] = None,
        options: Union[SessionOptions, Mapping[str, Any], None] = None,
        negotiator: Optional[AuthNegotiator] = None,
    ) -> None:
        self._credential = Credential.from_dict(
            {
                "username": username,
                "password": password,
                "region": region,
                "unit": unit,
                "captcha": captcha,
            }
        )
        if not isinstance(options, SessionOptions):
            options = SessionOptions.from_dict(options)
        self._options = options
        if options.debug_log:
            set_debug_enabled(True)

        self._transport = transport or AiohttpTransport(timeout=options.request_timeout)
        self._negotiator = negotiator or AuthNegotiator(
            self._transport,
            throttle_attempts=options.throttle_attempts,
            throttle_cooldown=options.throttle_cooldown,
        )
        self.session = Session(
            self._credential,
            self._negotiator,
            store if store is not None else MemoryTokenStore(),
            options,
        )
        self._prefix = mask(self._credential.username)

    async def __aenter__(self) -> "BmwClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.async_close()

    async def async_close(self) -> None:
        await self._transport.async_close()

    @staticmethod
    def is_valid_vin(vin: Any) -> bool:
        return is_valid_vin(vin)

    @property
    def region(self) -> str:
        return self._credential.region

    def host_for(self, selector: str) -> str:
        if selector == HOST_API:
            return API_HOSTS[self._credential.region]
        raise InvalidArgumentError(f"Unknown host selector '{selector}'")

    def _headers(self, token_type: str, access_token: str, vin: Optional[str]) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "accept-language": "en",
            "authorization": f"{token_type} {access_token}",
            "user-agent": USER_AGENT,
            "x-user-agent": X_USER_AGENT.format(region=USER_AGENT_REGIONS[self.region]),
            "x-identity-provider": IDENTITY_PROVIDER,
            "bmw-units-preferences": UNIT_PREFERENCES[self._credential.unit],
            "bmw-correlation-id": str(uuid.uuid4()),
        }
        if self.session.session_id:
            headers["bmw-session-id"] = self.session.session_id
        if vin:
            headers["bmw-vin"] = vin
        return headers

    async def _async_send(
        self,
        method: str,
        host: str,
        path: str,
        vin: Optional[str],
        body: Optional[str] = None,
    ) -> HttpResponse:
        token_type, access_token = await self.session.async_get_token()
        headers = self._headers(token_type, access_token, vin)
        if body is not None:
            headers["content-type"] = "application/json"
        response = await self._transport.request(method, host, path, headers, body)
        if not response.ok:
            _LOGGER.warning(
                "[%s] %s %s failed with HTTP %s", self._prefix, method, path, response.status
            )
            raise HttpStatusError(
                f"Server http statusCode {response.status}",
                status=response.status,
                body=response.body,
            )
        return response

    async def async_request_new_token(self) -> None:
        """Make sure a usable token is available, logging in or refreshing if needed."""

        await self.session.async_get_token()

    async def async_get(self, host: str, path: str, *, vin: Optional[str] = None) -> Any:
        """GET ``path`` from ``host`` and decode the (tagged) JSON answer."""

        response = await self._async_send("GET", host, path, vin)
        result = decode_body(response.body)
        if debug_enabled():
            _LOGGER.debug("[%s] GET %s done", self._prefix, path)
        return result

    async def async_execute(
        self,
        vin: str,
        path: str,
        *,
        action: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
        host: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST a command to ``path``; ``action`` ends up in the query string."""

        if action:
            separator = "&" if "?" in path else "?"
            path = f"{path}{separator}action={action}"
        body = json.dumps(payload) if payload is not None else None
        response = await self._async_send(
            "POST", host or self.host_for(HOST_API), path, vin, body
        )
        if response.status == 204 and not response.body.strip():
            return {}
        result = decode_body(response.body)
        return result if isinstance(result, dict) else {"result": result}

    async def async_get_car_list(self) -> List[Dict[str, Any]]:
        """Return the vehicles registered with the account."""

        endpoint = data_endpoint(GET_VEHICLES)
        result = await self.async_get(self.host_for(endpoint.host), build_path(endpoint, None))
        if isinstance(result, list):
            return result
        if isinstance(result, dict) and isinstance(result.get("vehicles"), list):
            return result["vehicles"]
        raise DecodeError(f"Unexpected vehicle list shape: {type(result).__name__}")

    async def async_get_car_info(self, vin: str, data_type: str) -> Any:
        """Return one kind of data for a vehicle."""

        endpoint = data_endpoint(data_type)
        self._check_vin(vin)
        return await self.async_get(
            self.host_for(endpoint.host),
            build_path(endpoint, vin),
            vin=vin if endpoint.vin_header else None,
        )

    async def async_execute_remote_service(
        self,
        vin: str,
        service: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Trigger a remote command; the answer usually carries an ``eventId``."""

        endpoint: Endpoint = remote_service(service)
        self._check_vin(vin)
        if payload is None and endpoint.params == PARAMS_JSON:
            payload = {}
        _LOGGER.info("[%s] Executing remote service %s", self._prefix, service)
        path = build_path(endpoint, vin)
        return await self.async_execute(vin, path, payload=payload, host=self.host_for(endpoint.host))

    def _check_vin(self, vin: Any) -> None:
        if not is_valid_vin(vin):
            raise InvalidArgumentError(f"Invalid VIN '{vin}'")
