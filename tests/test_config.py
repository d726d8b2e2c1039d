import pytest

from callrelay.config import DEFAULT_SERVER_URL, RelayOptions

_VARS = [
    "SERVER_URL",
    "RECONNECTION",
    "RECONNECTION_ATTEMPTS",
    "RECONNECTION_DELAY",
    "RECONNECTION_DELAY_MAX",
    "TIMEOUT",
    "ENABLE_CALL_SIGNALING",
    "COUNTRY_CODE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(f"CALLRELAY_{name}", raising=False)


def test_defaults():
    opts = RelayOptions.from_env(dotenv=False)
    assert opts == RelayOptions()
    assert opts.server_url == DEFAULT_SERVER_URL
    assert opts.reconnection_attempts == 10
    assert opts.reconnection_delay == 3.0
    assert opts.timeout == 20.0
    assert opts.default_country_code == "55"
    assert opts.log_level is None


def test_overrides(monkeypatch):
    monkeypatch.setenv("CALLRELAY_SERVER_URL", "http://localhost:9000")
    monkeypatch.setenv("CALLRELAY_RECONNECTION", "off")
    monkeypatch.setenv("CALLRELAY_RECONNECTION_ATTEMPTS", "3")
    monkeypatch.setenv("CALLRELAY_TIMEOUT", "2.5")
    monkeypatch.setenv("CALLRELAY_ENABLE_CALL_SIGNALING", "No")
    monkeypatch.setenv("CALLRELAY_COUNTRY_CODE", "1")
    monkeypatch.setenv("CALLRELAY_LOG_LEVEL", "DEBUG")

    opts = RelayOptions.from_env(dotenv=False)
    assert opts.server_url == "http://localhost:9000"
    assert opts.reconnection is False
    assert opts.reconnection_attempts == 3
    assert opts.timeout == 2.5
    assert opts.enable_call_signaling is False
    assert opts.default_country_code == "1"
    assert opts.log_level == "DEBUG"


def test_blank_values_use_defaults(monkeypatch):
    monkeypatch.setenv("CALLRELAY_RECONNECTION", " ")
    monkeypatch.setenv("CALLRELAY_TIMEOUT", "")
    opts = RelayOptions.from_env(dotenv=False)
    assert opts.reconnection is True
    assert opts.timeout == 20.0


def test_bad_boolean(monkeypatch):
    monkeypatch.setenv("CALLRELAY_RECONNECTION", "maybe")
    with pytest.raises(ValueError, match="CALLRELAY_RECONNECTION"):
        RelayOptions.from_env(dotenv=False)


def test_bad_number(monkeypatch):
    monkeypatch.setenv("CALLRELAY_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="CALLRELAY_TIMEOUT: expected a number"):
        RelayOptions.from_env(dotenv=False)
