"""Relay bridge options, with environment loading."""

from __future__ import annotations

import dataclasses
import os

from dotenv import load_dotenv

DEFAULT_SERVER_URL = "https://voice.zapvoz.com"

_ENV_PREFIX = "CALLRELAY_"
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclasses.dataclass
class RelayOptions:
    server_url: str = DEFAULT_SERVER_URL
    reconnection: bool = True
    reconnection_attempts: int = 10
    reconnection_delay: float = 3.0
    reconnection_delay_max: float = 5.0
    timeout: float = 20.0
    enable_call_signaling: bool = True
    default_country_code: str = "55"
    log_level: str | None = None

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> RelayOptions:
        """Build options from ``CALLRELAY_*`` variables (and ``.env``)."""
        if dotenv:
            load_dotenv()
        defaults = cls()
        return cls(
            server_url=_env_str("SERVER_URL", defaults.server_url),
            reconnection=_env_bool("RECONNECTION", defaults.reconnection),
            reconnection_attempts=int(
                _env_number("RECONNECTION_ATTEMPTS", defaults.reconnection_attempts)
            ),
            reconnection_delay=_env_number(
                "RECONNECTION_DELAY", defaults.reconnection_delay
            ),
            reconnection_delay_max=_env_number(
                "RECONNECTION_DELAY_MAX", defaults.reconnection_delay_max
            ),
            timeout=_env_number("TIMEOUT", defaults.timeout),
            enable_call_signaling=_env_bool(
                "ENABLE_CALL_SIGNALING", defaults.enable_call_signaling
            ),
            default_country_code=_env_str(
                "COUNTRY_CODE", defaults.default_country_code
            ),
            log_level=os.environ.get(_ENV_PREFIX + "LOG_LEVEL") or None,
        )


def _env_str(name: str, default: str) -> str:
    return os.environ.get(_ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{_ENV_PREFIX}{name}: expected a boolean, got {raw!r}")


def _env_number(name: str, default: float) -> float:
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{_ENV_PREFIX}{name}: expected a number, got {raw!r}"
        raise ValueError(msg) from None
