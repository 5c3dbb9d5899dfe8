"""Login and token refresh handshakes against the BMW identity provider."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import secrets
import string
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlencode, urlsplit

from .const import (
    API_HOSTS,
    DEFAULT_THROTTLE_ATTEMPTS,
    DEFAULT_THROTTLE_COOLDOWN,
    IDENTITY_PROVIDER,
    LOGIN_NONCE,
    OAUTH_CONFIG_PATH,
    OCP_APIM_KEYS,
    SSO_COOKIE,
    THROTTLE_STATUSES,
    USER_AGENT,
    USER_AGENT_REGIONS,
    X_USER_AGENT,
)
from .debug import debug_enabled
from .transport import HttpResponse, Transport

_LOGGER = logging.getLogger(__name__)

STAGE_CONFIG = "oauth_config"
STAGE_AUTHENTICATE = "authenticate"
STAGE_AUTHORIZE = "authorize"
STAGE_TOKEN = "token"
STAGE_REFRESH = "refresh"

_FORM = "application/x-www-form-urlencoded"


class AuthStageError(Exception):
    """Raised when a login or refresh stage returns an unexpected answer."""

    def __init__(self, message: str, *, stage: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.status = status

    @property
    def throttled(self) -> bool:
        return self.status in THROTTLE_STATUSES


class MissingCaptchaError(AuthStageError):
    """Raised when a first login is attempted without a live captcha token."""

    def __init__(self, message: str = "A captcha token is required for the first login") -> None:
        super().__init__(message, stage=STAGE_AUTHENTICATE)


@dataclass(frozen=True)
class OAuthConfig:
    """Region discovery document, fetched before every login or refresh."""

    client_id: str
    client_secret: str
    token_endpoint: str
    return_url: str
    scopes: Tuple[str, ...]

    @property
    def authenticate_endpoint(self) -> str:
        return self.token_endpoint.replace("/token", "/authenticate")

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def basic_authorization(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    @classmethod
    def from_payload(cls, payload: Any) -> "OAuthConfig":
        if not isinstance(payload, dict):
            raise AuthStageError("OAuth config is not an object", stage=STAGE_CONFIG)
        missing = [
            key
            for key in ("clientId", "clientSecret", "tokenEndpoint", "returnUrl", "scopes")
            if not payload.get(key)
        ]
        if missing:
            raise AuthStageError(
                f"OAuth config is missing {', '.join(missing)}", stage=STAGE_CONFIG
            )
        return cls(
            client_id=payload["clientId"],
            client_secret=payload["clientSecret"],
            token_endpoint=payload["tokenEndpoint"],
            return_url=payload["returnUrl"],
            scopes=tuple(payload["scopes"]),
        )


@dataclass
class TokenData:
    access_token: str
    refresh_token: Optional[str]
    token_type: str
    expires_in: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, stage: str) -> "TokenData":
        if not isinstance(payload, dict):
            raise AuthStageError("Token response is not an object", stage=stage)
        if "error" in payload:
            raise AuthStageError(
                payload.get("error_description") or str(payload["error"]), stage=stage
            )
        missing = [
            key for key in ("access_token", "token_type", "expires_in") if key not in payload
        ]
        if missing:
            raise AuthStageError(
                f"Couldn't find {', '.join(missing)} in token response", stage=stage
            )
        try:
            expires_in = int(payload["expires_in"])
        except (TypeError, ValueError) as err:
            raise AuthStageError("Token response has an invalid expires_in", stage=stage) from err
        known = {"access_token", "refresh_token", "token_type", "expires_in"}
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            token_type=payload["token_type"],
            expires_in=expires_in,
            extra={key: value for key, value in payload.items() if key not in known},
        )


def generate_code_verifier(length: int = 86) -> str:
    """Return a PKCE code verifier (43-128 characters)."""
    if length < 43 or length > 128:
        raise ValueError("length must be between 43 and 128 characters")
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_code_challenge(code_verifier: str) -> str:
    """Create the S256 PKCE code challenge for the verifier."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def new_session_id() -> str:
    return str(uuid.uuid4())


def extract_query_param(source: str, key: str) -> Optional[str]:
    """Extract a query parameter from either a URL or a raw query string."""

    if not source:
        return None
    if source.startswith("redirect_uri="):
        source = source.split("redirect_uri=", maxsplit=1)[1]
    source = unquote(source)
    parsed = urlsplit(source)
    values = parse_qs(parsed.query or parsed.path)
    if key not in values:
        return None
    return values[key][0]


def _split_url(url: str) -> Tuple[str, str]:
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return parts.netloc, path


def _json_body(response: HttpResponse, stage: str) -> Any:
    try:
        return json.loads(response.body)
    except (TypeError, json.JSONDecodeError) as err:
        raise AuthStageError(f"Invalid JSON response: {err}", stage=stage, status=response.status) from err


def _status_error(response: HttpResponse, stage: str) -> AuthStageError:
    detail = response.body.strip()[:200] if response.body else "no response body"
    return AuthStageError(
        f"{stage} failed ({response.status}): {detail}", stage=stage, status=response.status
    )


class AuthNegotiator:
    """Runs the login and refresh handshakes.

    Holds no session state: inputs go in, a ``TokenData`` comes out or an
    ``AuthStageError``/``TransportError`` is raised.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        throttle_attempts: int = DEFAULT_THROTTLE_ATTEMPTS,
        throttle_cooldown: float = DEFAULT_THROTTLE_COOLDOWN,
    ) -> None:
        self._transport = transport
        self._throttle_attempts = max(1, throttle_attempts)
        self._throttle_cooldown = throttle_cooldown

    def _base_headers(self, region: str, session_id: str) -> Dict[str, str]:
        correlation_id = str(uuid.uuid4())
        return {
            "accept": "application/json",
            "user-agent": USER_AGENT,
            "x-user-agent": X_USER_AGENT.format(region=USER_AGENT_REGIONS[region]),
            "ocp-apim-subscription-key": OCP_APIM_KEYS[region],
            "bmw-session-id": session_id,
            "x-identity-provider": IDENTITY_PROVIDER,
            "x-correlation-id": correlation_id,
            "bmw-correlation-id": correlation_id,
        }

    async def _post_form(
        self,
        url: str,
        form: Dict[str, str],
        headers: Dict[str, str],
    ) -> HttpResponse:
        host, path = _split_url(url)
        return await self._transport.request(
            "POST", host, path, dict(headers, **{"content-type": _FORM}), urlencode(form)
        )

    async def _with_throttle_retry(self, stage: str, send) -> HttpResponse:
        """Repeat ``send`` while the identity provider signals throttling."""

        for attempt in range(1, self._throttle_attempts + 1):
            response = await send()
            if response.status not in THROTTLE_STATUSES:
                return response
            if attempt < self._throttle_attempts:
                _LOGGER.warning(
                    "%s throttled (%s), retrying in %ss (attempt %s/%s)",
                    stage,
                    response.status,
                    self._throttle_cooldown,
                    attempt,
                    self._throttle_attempts,
                )
                await asyncio.sleep(self._throttle_cooldown)
        raise _status_error(response, stage)

    async def async_fetch_oauth_config(self, region: str, session_id: str) -> OAuthConfig:
        """Fetch the region's OAuth client settings and endpoints."""

        if region not in API_HOSTS:
            raise AuthStageError(f"Unsupported region: {region}", stage=STAGE_CONFIG)
        response = await self._transport.request(
            "GET", API_HOSTS[region], OAUTH_CONFIG_PATH, self._base_headers(region, session_id)
        )
        if not response.ok:
            raise _status_error(response, STAGE_CONFIG)
        return OAuthConfig.from_payload(_json_body(response, STAGE_CONFIG))

    async def async_login(
        self,
        region: str,
        username: str,
        password: str,
        session_id: str,
        captcha_token: Optional[str],
    ) -> TokenData:
        """Run the full PKCE login handshake."""

        if not captcha_token:
            raise MissingCaptchaError()

        config = await self.async_fetch_oauth_config(region, session_id)
        headers = self._base_headers(region, session_id)
        code_verifier = generate_code_verifier()
        base_form = {
            "client_id": config.client_id,
            "response_type": "code",
            "redirect_uri": config.return_url,
            "state": generate_code_verifier(43),
            "nonce": LOGIN_NONCE,
            "scope": config.scope,
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }

        authorization = await self._async_stage_authenticate(
            config, base_form, headers, username, password, captcha_token
        )
        code = await self._async_stage_authorize(config, base_form, headers, authorization)
        token_data = await self._async_stage_token(config, headers, code, code_verifier)
        if debug_enabled():
            _LOGGER.debug(
                "Login completed; token expires in %ss (token length=%s)",
                token_data.expires_in,
                len(token_data.access_token),
            )
        return token_data

    async def _async_stage_authenticate(
        self,
        config: OAuthConfig,
        base_form: Dict[str, str],
        headers: Dict[str, str],
        username: str,
        password: str,
        captcha_token: str,
    ) -> str:
        form = dict(
            base_form,
            grant_type="authorization_code",
            username=username,
            password=password,
        )
        stage_headers = dict(headers, hcaptchatoken=captcha_token)

        response = await self._with_throttle_retry(
            STAGE_AUTHENTICATE,
            lambda: self._post_form(config.authenticate_endpoint, form, stage_headers),
        )
        if not response.ok:
            raise _status_error(response, STAGE_AUTHENTICATE)

        payload = _json_body(response, STAGE_AUTHENTICATE)
        redirect_to = payload.get("redirect_to") if isinstance(payload, dict) else None
        authorization = extract_query_param(redirect_to or "", "authorization")
        if not authorization:
            raise AuthStageError(
                "Missing authorization in authenticate response",
                stage=STAGE_AUTHENTICATE,
                status=response.status,
            )
        return authorization

    async def _async_stage_authorize(
        self,
        config: OAuthConfig,
        base_form: Dict[str, str],
        headers: Dict[str, str],
        authorization: str,
    ) -> str:
        form = dict(base_form, authorization=authorization)
        stage_headers = dict(headers, cookie=f"{SSO_COOKIE}={authorization}")

        response = await self._post_form(config.authenticate_endpoint, form, stage_headers)
        if response.status != 302:
            raise _status_error(response, STAGE_AUTHORIZE)

        code = extract_query_param(response.header("location") or "", "code")
        if not code:
            raise AuthStageError(
                "Missing authorization code in redirect", stage=STAGE_AUTHORIZE, status=302
            )
        return code

    async def _async_stage_token(
        self,
        config: OAuthConfig,
        headers: Dict[str, str],
        code: str,
        code_verifier: str,
    ) -> TokenData:
        form = {
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": config.return_url,
            "grant_type": "authorization_code",
        }
        stage_headers = dict(headers, authorization=config.basic_authorization)
        response = await self._post_form(config.token_endpoint, form, stage_headers)
        if not response.ok:
            raise _status_error(response, STAGE_TOKEN)
        return TokenData.from_payload(_json_body(response, STAGE_TOKEN), STAGE_TOKEN)

    async def async_refresh(self, region: str, refresh_token: str, session_id: str) -> TokenData:
        """Exchange a refresh token for a new access token."""

        config = await self.async_fetch_oauth_config(region, session_id)
        form = {
            "scope": config.scope,
            "redirect_uri": config.return_url,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        headers = dict(
            self._base_headers(region, session_id), authorization=config.basic_authorization
        )

        response = await self._with_throttle_retry(
            STAGE_REFRESH, lambda: self._post_form(config.token_endpoint, form, headers)
        )
        if not response.ok:
            raise _status_error(response, STAGE_REFRESH)
        token_data = TokenData.from_payload(_json_body(response, STAGE_REFRESH), STAGE_REFRESH)
        if debug_enabled():
            _LOGGER.debug("Token refreshed; expires in %ss", token_data.expires_in)
        return token_data
