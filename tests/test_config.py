"""Tests for credential and option validation."""

import pytest

from carbmw.config import Credential, SessionOptions
from carbmw.services import InvalidArgumentError


class TestCredential:
    def test_defaults(self):
        credential = Credential.from_dict({"username": " Driver@Example.com ", "password": "pw"})

        assert credential.username == "Driver@Example.com"
        assert credential.region == "rest_of_world"
        assert credential.unit == "metric"
        assert credential.captcha is None
        assert credential.account_key == "rest_of_world:driver@example.com"

    def test_repr_hides_secrets(self):
        credential = Credential.from_dict(
            {"username": "driver", "password": "hunter2", "captcha": "P1_secret"}
        )
        assert "hunter2" not in repr(credential)
        assert "P1_secret" not in repr(credential)

    @pytest.mark.parametrize(
        "data",
        [
            {"username": "", "password": "pw"},
            {"username": "driver"},
            {"username": "driver", "password": "pw", "region": "china"},
            {"username": "driver", "password": "pw", "unit": "furlongs"},
        ],
    )
    def test_invalid_input(self, data):
        with pytest.raises(InvalidArgumentError):
            Credential.from_dict(data)


class TestSessionOptions:
    def test_defaults(self):
        options = SessionOptions.from_dict(None)

        assert options.refresh_margin == 900
        assert options.refresh_retry_interval == 60
        assert options.throttle_attempts == 3
        assert options.throttle_cooldown == 15
        assert options.captcha_ttl == 600
        assert options.request_timeout == 30
        assert options.debug_log is False

    def test_values_are_coerced(self):
        options = SessionOptions.from_dict({"refresh_margin": "120", "throttle_attempts": "5"})

        assert options.refresh_margin == 120.0
        assert options.throttle_attempts == 5

    @pytest.mark.parametrize(
        "data",
        [{"refresh_margin": -1}, {"throttle_attempts": 0}, {"unknown": True}],
    )
    def test_invalid_options(self, data):
        with pytest.raises(InvalidArgumentError):
            SessionOptions.from_dict(data)
