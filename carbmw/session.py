"""Session state machine and token lifecycle for one account."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from .auth import (
    STAGE_REFRESH,
    AuthNegotiator,
    AuthStageError,
    MissingCaptchaError,
    TokenData,
    new_session_id,
)
from .config import Credential, SessionOptions
from .const import MAX_AUTH_ROUNDS, STATE_AUTHENTICATING, STATE_LOGGED_IN, STATE_LOGGED_OUT
from .crypto import InvalidToken, captcha_fingerprint, decrypt, encrypt
from .debug import debug_enabled, mask
from .store import TokenStore
from .transport import TransportError

_LOGGER = logging.getLogger(__name__)


class SessionState(IntEnum):
    LOGGED_OUT = STATE_LOGGED_OUT
    LOGGED_IN = STATE_LOGGED_IN
    AUTHENTICATING = STATE_AUTHENTICATING


class Session:
    """Own the authentication state of a single account.

    At most one login or refresh runs at a time. It runs as a separate task
    that every interested caller awaits through ``asyncio.shield``, so the
    outcome is shared and a caller giving up never aborts the attempt.
    """

    def __init__(
        self,
        credential: Credential,
        negotiator: AuthNegotiator,
        store: TokenStore,
        options: Optional[SessionOptions] = None,
    ) -> None:
        self._credential = credential
        self._negotiator = negotiator
        self._store = store
        self._options = options or SessionOptions()
        self._prefix = mask(credential.username)

        self.state = SessionState.LOGGED_OUT
        self.access_token: Optional[str] = None
        self.token_type: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: float = 0.0
        self.lifetime: float = 0.0
        self.session_id: Optional[str] = None

        self.captcha_token: Optional[str] = credential.captcha or None
        self.captcha_created_at: float = time.time() if self.captcha_token else 0.0
        self._captcha_fingerprint: Optional[str] = (
            captcha_fingerprint(self.captcha_token) if self.captcha_token else None
        )

        self._refresh_blocked_until = 0.0
        self._restored = False
        self._restore_lock = asyncio.Lock()
        self._attempt: Optional[asyncio.Task] = None

    @property
    def key(self) -> str:
        return self._credential.account_key

    def _ensure_session_id(self) -> str:
        if not self.session_id:
            self.session_id = new_session_id()
        return self.session_id

    # ------------------------------------------------------------------
    # State inspection

    def token_valid(self, now: Optional[float] = None) -> bool:
        """Return True while the current token has not really expired."""

        now = time.time() if now is None else now
        return (
            self.state is SessionState.LOGGED_IN
            and bool(self.access_token)
            and now < self.expires_at
        )

    def token_fresh(self, now: Optional[float] = None) -> bool:
        """Return True when the token can be used without refreshing first."""

        now = time.time() if now is None else now
        if not self.token_valid(now):
            return False
        if now < self.expires_at - self.refresh_margin():
            return True
        return now < self._refresh_blocked_until

    def refresh_margin(self) -> float:
        """Return how long before expiry a refresh is due.

        Short-lived tokens are kept for at least half their lifetime so that
        a lifetime at or below the configured margin does not cause a
        refresh on every operation.
        """

        margin = self._options.refresh_margin
        if self.lifetime > 0:
            return min(margin, self.lifetime / 2)
        return margin

    def captcha_live(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return (
            bool(self.captcha_token)
            and self.captcha_created_at > 0
            and now - self.captcha_created_at < self._options.captcha_ttl
        )

    def _transition(self, new_state: SessionState) -> None:
        if new_state is not self.state and debug_enabled():
            _LOGGER.debug("[%s] %s -> %s", self._prefix, self.state.name, new_state.name)
        self.state = new_state

    # ------------------------------------------------------------------
    # Public operations

    async def async_get_token(self) -> Tuple[str, str]:
        """Return ``(token_type, access_token)``, authenticating if needed."""

        await self._async_restore()
        rounds = 0
        settled = False
        while True:
            if self.state is SessionState.AUTHENTICATING:
                await self._async_wait_for_attempt()
                settled = True
                continue
            if self.token_fresh() or (settled and self.token_valid()):
                return self.token_type or "Bearer", self.access_token
            if rounds >= MAX_AUTH_ROUNDS:
                raise AuthStageError(
                    "No usable token after re-authentication", stage=STAGE_REFRESH
                )
            rounds += 1
            self._start_attempt()

    async def async_logout(self) -> None:
        """Forget all token material; the next operation logs in again."""

        await self._async_restore()
        while self.state is SessionState.AUTHENTICATING:
            try:
                await self._async_wait_for_attempt()
            except (AuthStageError, TransportError):
                break
        self._clear_tokens()
        self._transition(SessionState.LOGGED_OUT)
        await self._async_persist()

    # ------------------------------------------------------------------
    # Single in-flight attempt

    def _start_attempt(self) -> None:
        self._transition(SessionState.AUTHENTICATING)
        attempt = asyncio.ensure_future(self._async_negotiate())
        attempt.add_done_callback(self._attempt_done)
        self._attempt = attempt

    def _attempt_done(self, attempt: asyncio.Task) -> None:
        if self._attempt is attempt:
            self._attempt = None
        if attempt.cancelled():
            return
        err = attempt.exception()
        if err is not None and debug_enabled():
            _LOGGER.debug("[%s] Authentication attempt failed: %s", self._prefix, err)

    async def _async_wait_for_attempt(self) -> None:
        attempt = self._attempt
        if attempt is None:
            self._settle()
            return
        await asyncio.shield(attempt)

    def _settle(self) -> None:
        self._transition(
            SessionState.LOGGED_IN if self._has_unexpired_token() else SessionState.LOGGED_OUT
        )

    def _has_unexpired_token(self) -> bool:
        return bool(self.access_token) and time.time() < self.expires_at

    async def _async_negotiate(self) -> None:
        try:
            if self.refresh_token:
                await self._async_refresh()
            else:
                await self._async_login()
        finally:
            if self.state is SessionState.AUTHENTICATING:
                self._settle()

    async def _async_login(self) -> None:
        if not self.captcha_live():
            _LOGGER.error(
                "[%s] Login needs a fresh captcha token; none is available", self._prefix
            )
            await self._async_fail()
            raise MissingCaptchaError()

        self.session_id = new_session_id()
        _LOGGER.info("[%s] Logging in", self._prefix)
        try:
            token_data = await self._negotiator.async_login(
                self._credential.region,
                self._credential.username,
                self._credential.password,
                self.session_id,
                self.captcha_token,
            )
        except (AuthStageError, TransportError) as err:
            _LOGGER.error("[%s] Login failed: %s", self._prefix, err)
            await self._async_fail()
            raise

        # The captcha is single use
        self.captcha_token = None
        self.captcha_created_at = 0.0
        await self._async_apply(token_data)

    async def _async_refresh(self) -> None:
        try:
            token_data = await self._negotiator.async_refresh(
                self._credential.region, self.refresh_token, self._ensure_session_id()
            )
        except (AuthStageError, TransportError) as err:
            now = time.time()
            if self.access_token and now < self.expires_at:
                self._refresh_blocked_until = now + self._options.refresh_retry_interval
                self._transition(SessionState.LOGGED_IN)
                _LOGGER.warning(
                    "[%s] Token refresh failed (%s); using current token for another %.0fs",
                    self._prefix,
                    err,
                    self.expires_at - now,
                )
                return
            _LOGGER.error("[%s] Token refresh failed after expiry: %s", self._prefix, err)
            await self._async_fail()
            raise
        await self._async_apply(token_data)

    async def _async_apply(self, token_data: TokenData) -> None:
        self.access_token = token_data.access_token
        self.token_type = token_data.token_type
        if token_data.refresh_token:
            self.refresh_token = token_data.refresh_token
        self.expires_at = time.time() + token_data.expires_in
        self.lifetime = float(token_data.expires_in)
        self._refresh_blocked_until = 0.0
        self._transition(SessionState.LOGGED_IN)
        _LOGGER.info(
            "[%s] Authenticated; token expires at %s",
            self._prefix,
            time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.expires_at)),
        )
        await self._async_persist()

    async def _async_fail(self) -> None:
        self._clear_tokens()
        self._transition(SessionState.LOGGED_OUT)
        await self._async_persist()

    def _clear_tokens(self) -> None:
        self.access_token = None
        self.token_type = None
        self.refresh_token = None
        self.expires_at = 0.0
        self.lifetime = 0.0
        self._refresh_blocked_until = 0.0

    # ------------------------------------------------------------------
    # Persistence

    async def _async_restore(self) -> None:
        if self._restored:
            return
        async with self._restore_lock:
            if self._restored:
                return
            await self._store.async_with_record(self.key, self._load_record)
            self._restored = True

    def _load_record(self, record: Dict[str, Any]) -> None:
        password = self._credential.password

        stored_captcha = record.get("captcha")
        if self._captcha_fingerprint and isinstance(stored_captcha, str):
            fingerprint, _, created = stored_captcha.rpartition(".")
            if fingerprint == self._captcha_fingerprint:
                try:
                    self.captcha_created_at = int(created) / 1000
                except ValueError:
                    self.captcha_created_at = 0.0
                if not self.captcha_created_at:
                    self.captcha_token = None

        try:
            token = decrypt(password, record["token"]) if record.get("token") else None
            refresh = decrypt(password, record["refresh"]) if record.get("refresh") else None
        except (InvalidToken, ValueError, TypeError):
            _LOGGER.warning(
                "[%s] Stored tokens cannot be decrypted (password changed?); ignoring them",
                self._prefix,
            )
            return

        self.access_token = token
        self.refresh_token = refresh
        self.token_type = record.get("type")
        self.session_id = record.get("session")
        try:
            self.expires_at = float(record.get("expires") or 0) / 1000
        except (TypeError, ValueError):
            self.expires_at = 0.0

        if token and record.get("state") in (STATE_LOGGED_IN, STATE_AUTHENTICATING):
            self.state = SessionState.LOGGED_IN
        else:
            self.state = SessionState.LOGGED_OUT
        if debug_enabled():
            _LOGGER.debug(
                "[%s] Restored session: state=%s expires=%s refresh_token=%s",
                self._prefix,
                self.state.name,
                self.expires_at,
                bool(refresh),
            )

    def _write_record(self, record: Dict[str, Any]) -> None:
        password = self._credential.password
        record.update(
            {
                "expires": int(self.expires_at * 1000),
                "type": self.token_type,
                "session": self.session_id,
                "state": int(self.state),
                "token": encrypt(password, self.access_token) if self.access_token else None,
                "refresh": encrypt(password, self.refresh_token) if self.refresh_token else None,
            }
        )
        if self._captcha_fingerprint:
            record["captcha"] = (
                f"{self._captcha_fingerprint}.{int(self.captcha_created_at * 1000)}"
            )

    async def _async_persist(self) -> None:
        await self._store.async_with_record(self.key, self._write_record)
