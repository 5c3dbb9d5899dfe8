"""Tests for the session state machine and token lifecycle."""

import asyncio
import time

import pytest

from carbmw.auth import AuthStageError, MissingCaptchaError
from carbmw.config import Credential, SessionOptions
from carbmw.crypto import captcha_fingerprint, decrypt
from carbmw.session import Session, SessionState
from carbmw.store import MemoryTokenStore
from carbmw.transport import TransportError

from conftest import ACCOUNT_KEY, CAPTCHA, PASSWORD, USERNAME, FakeNegotiator, stored_record, throttled


def _seeded_session(negotiator, options, **record_kwargs):
    store = MemoryTokenStore({ACCOUNT_KEY: stored_record(**record_kwargs)})
    credential = Credential.from_dict({"username": USERNAME, "password": PASSWORD})
    return Session(credential, negotiator, store, options), store


class TestLogin:
    """First login of an account."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_login(self, session, negotiator):
        results = await asyncio.gather(*(session.async_get_token() for _ in range(8)))

        assert negotiator.login_calls == 1
        assert negotiator.refresh_calls == 0
        assert set(results) == {("Bearer", "login-token")}
        assert session.state is SessionState.LOGGED_IN

    @pytest.mark.asyncio
    async def test_login_persists_encrypted_tokens(self, session, store):
        await session.async_get_token()

        record = store.snapshot(ACCOUNT_KEY)
        assert record["state"] == SessionState.LOGGED_IN
        assert record["type"] == "Bearer"
        assert record["token"] != "login-token"
        assert decrypt(PASSWORD, record["token"]) == "login-token"
        assert decrypt(PASSWORD, record["refresh"]) == "login-refresh"
        assert record["session"] == session.session_id
        assert record["expires"] > time.time() * 1000
        assert PASSWORD not in str(record)

    @pytest.mark.asyncio
    async def test_captcha_is_consumed_by_successful_login(self, session, store):
        await session.async_get_token()

        assert session.captcha_token is None
        assert store.snapshot(ACCOUNT_KEY)["captcha"] == f"{captcha_fingerprint(CAPTCHA)}.0"

    @pytest.mark.asyncio
    async def test_missing_captcha_fails_without_contacting_provider(self, negotiator, store, options):
        credential = Credential.from_dict({"username": USERNAME, "password": PASSWORD})
        session = Session(credential, negotiator, store, options)

        with pytest.raises(MissingCaptchaError):
            await session.async_get_token()

        assert negotiator.login_calls == 0
        assert session.state is SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_expired_captcha_is_not_used(self, credential, negotiator, store):
        session = Session(credential, negotiator, store, SessionOptions(captcha_ttl=60))
        session.captcha_created_at = time.time() - 120

        with pytest.raises(MissingCaptchaError):
            await session.async_get_token()
        assert negotiator.login_calls == 0

    @pytest.mark.asyncio
    async def test_consumed_captcha_is_remembered_across_restarts(self, credential, negotiator, options):
        store = MemoryTokenStore(
            {ACCOUNT_KEY: {"captcha": f"{captcha_fingerprint(CAPTCHA)}.0", "state": 0}}
        )
        session = Session(credential, negotiator, store, options)

        with pytest.raises(MissingCaptchaError):
            await session.async_get_token()

    @pytest.mark.asyncio
    async def test_failed_login_is_shared_by_waiters_and_logs_out(self, session, negotiator, store):
        negotiator.login_error = AuthStageError("bad password", stage="authenticate", status=401)

        results = await asyncio.gather(
            *(session.async_get_token() for _ in range(4)), return_exceptions=True
        )

        assert negotiator.login_calls == 1
        assert all(isinstance(result, AuthStageError) for result in results)
        assert session.state is SessionState.LOGGED_OUT
        assert store.snapshot(ACCOUNT_KEY)["token"] is None

    @pytest.mark.asyncio
    async def test_abandoned_caller_does_not_cancel_login(self, session, negotiator):
        negotiator.delay = 0.05
        first = asyncio.ensure_future(session.async_get_token())
        await asyncio.sleep(0.01)
        assert session.state is SessionState.AUTHENTICATING

        first.cancel()
        token = await session.async_get_token()

        assert token == ("Bearer", "login-token")
        assert negotiator.login_calls == 1


class TestTokenLifecycle:
    """Restored sessions, refresh and the stale-token fallback."""

    @pytest.mark.asyncio
    async def test_fresh_token_is_never_reauthenticated(self, negotiator, options):
        session, _ = _seeded_session(negotiator, options, expires_in=3600)

        for _ in range(3):
            assert await session.async_get_token() == ("Bearer", "stored-token")

        assert negotiator.login_calls == 0
        assert negotiator.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_expired_token_triggers_exactly_one_refresh(self, negotiator, options):
        session, store = _seeded_session(negotiator, options, expires_in=-10)

        results = await asyncio.gather(*(session.async_get_token() for _ in range(5)))

        assert negotiator.refresh_calls == 1
        assert negotiator.login_calls == 0
        assert set(results) == {("Bearer", "refreshed-token")}
        assert decrypt(PASSWORD, store.snapshot(ACCOUNT_KEY)["refresh"]) == "refreshed-refresh"

    @pytest.mark.asyncio
    async def test_refresh_reuses_session_id(self, negotiator, options):
        session, _ = _seeded_session(negotiator, options, expires_in=-10)

        await session.async_get_token()

        assert negotiator.session_ids == ["stored-session"]
        assert session.session_id == "stored-session"

    @pytest.mark.asyncio
    async def test_token_inside_margin_is_refreshed_proactively(self, negotiator):
        session, _ = _seeded_session(negotiator, SessionOptions(refresh_margin=900), expires_in=300)

        assert await session.async_get_token() == ("Bearer", "refreshed-token")
        assert negotiator.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_short_lived_token_is_not_refreshed_on_every_call(self, negotiator):
        negotiator.expires_in = 600
        session, _ = _seeded_session(negotiator, SessionOptions(refresh_margin=900), expires_in=-10)

        for _ in range(5):
            assert await session.async_get_token() == ("Bearer", "refreshed-token")

        assert negotiator.refresh_calls == 1
        assert session.refresh_margin() == 300

    @pytest.mark.asyncio
    async def test_short_lived_login_token_is_used_for_half_its_life(self, session, negotiator):
        negotiator.expires_in = 60

        await session.async_get_token()
        await session.async_get_token()

        assert negotiator.login_calls == 1
        assert negotiator.refresh_calls == 0
        assert session.token_fresh(session.expires_at - 31)
        assert not session.token_fresh(session.expires_at - 29)

    @pytest.mark.asyncio
    async def test_throttled_refresh_before_expiry_keeps_stale_token(self, negotiator, options):
        negotiator.refresh_error = throttled(429)
        session, store = _seeded_session(negotiator, options, expires_in=300)

        token = await session.async_get_token()

        assert token == ("Bearer", "stored-token")
        assert session.state is SessionState.LOGGED_IN
        assert store.snapshot(ACCOUNT_KEY)["state"] == SessionState.LOGGED_IN

    @pytest.mark.asyncio
    async def test_soft_failure_waits_before_next_refresh(self, negotiator, options):
        negotiator.refresh_error = throttled(429)
        session, _ = _seeded_session(negotiator, options, expires_in=300)

        await session.async_get_token()
        await session.async_get_token()

        assert negotiator.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_soft_failure_retries_after_interval(self, negotiator):
        negotiator.refresh_error = throttled(429)
        session, _ = _seeded_session(
            negotiator, SessionOptions(refresh_retry_interval=0), expires_in=300
        )

        await session.async_get_token()
        negotiator.refresh_error = None
        token = await session.async_get_token()

        assert token == ("Bearer", "refreshed-token")
        assert negotiator.refresh_calls == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_after_expiry_logs_out(self, negotiator, options):
        negotiator.refresh_error = throttled(429)
        session, store = _seeded_session(negotiator, options, expires_in=-10)

        with pytest.raises(AuthStageError):
            await session.async_get_token()

        assert session.state is SessionState.LOGGED_OUT
        assert session.access_token is None
        assert session.refresh_token is None
        record = store.snapshot(ACCOUNT_KEY)
        assert record["state"] == SessionState.LOGGED_OUT
        assert record["token"] is None
        assert record["refresh"] is None

    @pytest.mark.asyncio
    async def test_transport_error_during_refresh_uses_fallback(self, negotiator, options):
        negotiator.refresh_error = TransportError("connection reset")
        session, _ = _seeded_session(negotiator, options, expires_in=120)

        assert await session.async_get_token() == ("Bearer", "stored-token")

    @pytest.mark.asyncio
    async def test_undecryptable_tokens_are_ignored(self, negotiator, options):
        session, _ = _seeded_session(negotiator, options, password="old-password")

        with pytest.raises(MissingCaptchaError):
            await session.async_get_token()
        assert negotiator.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_logout_clears_and_persists(self, negotiator, options):
        session, store = _seeded_session(negotiator, options)

        await session.async_logout()

        assert session.state is SessionState.LOGGED_OUT
        assert store.snapshot(ACCOUNT_KEY)["token"] is None

    @pytest.mark.asyncio
    async def test_store_is_read_once(self, negotiator, options):
        session, store = _seeded_session(negotiator, options)
        reads = []
        original = store.async_with_record

        async def counting(key, callback):
            reads.append(key)
            await original(key, callback)

        store.async_with_record = counting
        await asyncio.gather(*(session.async_get_token() for _ in range(3)))

        assert reads == [ACCOUNT_KEY]


def test_session_built_outside_a_running_loop(credential, negotiator, options):
    session = Session(credential, negotiator, MemoryTokenStore(), options)

    async def contend():
        return await asyncio.gather(*(session.async_get_token() for _ in range(3)))

    assert asyncio.run(contend()) == [("Bearer", "login-token")] * 3
    assert negotiator.login_calls == 1
