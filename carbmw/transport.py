"""HTTP transport used for every call towards the vendor."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp

from .const import DEFAULT_REQUEST_TIMEOUT
from .debug import debug_enabled

_LOGGER = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when the vendor cannot be reached."""


class HttpStatusError(TransportError):
    """Raised when a data request is answered with a non-2xx status."""

    def __init__(self, message: str, *, status: int, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        """Return a header value using a case-insensitive lookup."""

        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class Transport:
    """Capability to send a single HTTPS request.

    Implementations must not follow redirects: the login handshake reads the
    ``Location`` header of a redirect response itself.
    """

    async def request(
        self,
        method: str,
        host: str,
        path: str,
        headers: Dict[str, str],
        body: Optional[str] = None,
    ) -> HttpResponse:
        raise NotImplementedError

    async def async_close(self) -> None:
        """Release any resources held by the transport."""


class AiohttpTransport(Transport):
    """Default transport backed by an ``aiohttp.ClientSession``."""

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        host: str,
        path: str,
        headers: Dict[str, str],
        body: Optional[str] = None,
    ) -> HttpResponse:
        url = f"https://{host}{path}"
        if debug_enabled():
            _LOGGER.debug("%s %s", method, url)
        try:
            async with self._get_session().request(
                method,
                url,
                headers=headers,
                data=body.encode("utf-8") if body is not None else None,
                allow_redirects=False,
                timeout=self._timeout,
            ) as response:
                text = await response.text()
                if debug_enabled():
                    _LOGGER.debug(
                        "%s %s -> %s (%s bytes)", method, url, response.status, len(text)
                    )
                return HttpResponse(
                    status=response.status,
                    headers={key: value for key, value in response.headers.items()},
                    body=text,
                )
        except aiohttp.ClientError as err:
            raise TransportError(f"Network error: {err}") from err
        except asyncio.TimeoutError as err:
            raise TransportError(f"Request to {host} timed out") from err

    async def async_close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
