"""Shared fakes for the transport, negotiator and store collaborators."""

import asyncio
import json
import time
from typing import Dict, List, Optional, Tuple

import pytest

from carbmw.auth import AuthStageError, TokenData
from carbmw.config import Credential, SessionOptions
from carbmw.crypto import captcha_fingerprint, encrypt
from carbmw.session import Session
from carbmw.store import MemoryTokenStore
from carbmw.transport import HttpResponse, Transport

USERNAME = "driver@example.com"
PASSWORD = "s3cret!"
CAPTCHA = "P1_captcha-token"
VIN = "WBA12345678901234"
ACCOUNT_KEY = f"rest_of_world:{USERNAME}"

OAUTH_CONFIG = {
    "clientName": "mybmwapp",
    "clientId": "client-id",
    "clientSecret": "client-secret",
    "tokenEndpoint": "https://customer.bmwgroup.com/gcdm/oauth/token",
    "returnUrl": "com.bmw.connected://oauth",
    "scopes": ["openid", "vehicle_data", "remote_services"],
}


def json_response(payload, status: int = 200, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(status=status, headers=headers or {}, body=json.dumps(payload))


class FakeTransport(Transport):
    """Replays scripted responses per (method, path) and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[HttpResponse]] = {}
        self.calls: List[dict] = []
        self.closed = False

    def add(self, method: str, path: str, *responses: HttpResponse) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def calls_to(self, path: str) -> List[dict]:
        return [call for call in self.calls if call["path"].split("?")[0] == path]

    async def request(self, method, host, path, headers, body=None) -> HttpResponse:
        self.calls.append(
            {"method": method, "host": host, "path": path, "headers": dict(headers), "body": body}
        )
        await asyncio.sleep(0)
        queue = self.routes.get((method, path.split("?")[0]))
        if not queue:
            return HttpResponse(status=404, body="not found")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def async_close(self) -> None:
        self.closed = True


def add_login_routes(transport: FakeTransport, *, token_payload: Optional[dict] = None) -> None:
    transport.add("GET", "/eadrax-ucs/v1/presentation/oauth/config", json_response(OAUTH_CONFIG))
    transport.add(
        "POST",
        "/gcdm/oauth/authenticate",
        json_response(
            {"redirect_to": "redirect_uri=com.bmw.connected://oauth?authorization=AUTH-123"}
        ),
        HttpResponse(
            status=302,
            headers={"Location": "com.bmw.connected://oauth?code=CODE-456&state=xyz"},
        ),
    )
    transport.add(
        "POST",
        "/gcdm/oauth/token",
        json_response(
            token_payload
            or {
                "access_token": "access-1",
                "refresh_token": "refresh-1",
                "token_type": "Bearer",
                "expires_in": 3599,
            }
        ),
    )


class FakeNegotiator:
    """Stand-in for ``AuthNegotiator`` counting handshakes."""

    def __init__(self, delay: float = 0.01) -> None:
        self.delay = delay
        self.login_calls = 0
        self.refresh_calls = 0
        self.login_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.session_ids: List[str] = []
        self.expires_in = 3600

    async def async_login(self, region, username, password, session_id, captcha_token):
        self.login_calls += 1
        self.session_ids.append(session_id)
        await asyncio.sleep(self.delay)
        if self.login_error is not None:
            raise self.login_error
        return TokenData("login-token", "login-refresh", "Bearer", self.expires_in)

    async def async_refresh(self, region, refresh_token, session_id):
        self.refresh_calls += 1
        self.session_ids.append(session_id)
        await asyncio.sleep(self.delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenData("refreshed-token", "refreshed-refresh", "Bearer", self.expires_in)


def stored_record(
    *,
    token: str = "stored-token",
    refresh: Optional[str] = "stored-refresh",
    expires_in: float = 3600,
    password: str = PASSWORD,
    session: str = "stored-session",
) -> dict:
    return {
        "expires": int((time.time() + expires_in) * 1000),
        "type": "Bearer",
        "session": session,
        "state": 1,
        "token": encrypt(password, token),
        "refresh": encrypt(password, refresh) if refresh else None,
        "captcha": f"{captcha_fingerprint(CAPTCHA)}.0",
    }


def throttled(status: int = 429) -> AuthStageError:
    return AuthStageError(f"refresh failed ({status})", stage="refresh", status=status)


@pytest.fixture
def credential():
    return Credential.from_dict({"username": USERNAME, "password": PASSWORD, "captcha": CAPTCHA})


@pytest.fixture
def options():
    return SessionOptions(throttle_cooldown=0)


@pytest.fixture
def negotiator():
    return FakeNegotiator()


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def session(credential, negotiator, store, options):
    return Session(credential, negotiator, store, options)


@pytest.fixture
def transport():
    return FakeTransport()
