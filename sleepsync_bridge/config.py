"""
Bridge configuration

Settings are read from the environment, after loading an optional .env file.
Command-line flags are applied on top with BridgeConfig.with_overrides().
"""

import os
from dataclasses import dataclass, replace

from dotenv import find_dotenv, load_dotenv

DEFAULT_HTTP_PORT = 3001
DEFAULT_WS_PORT = 3002
DEFAULT_BAUD_RATE = 115200
DEFAULT_RECONNECT_DELAY = 3.0


@dataclass(frozen=True)
class BridgeConfig:
    host: str = "0.0.0.0"
    http_port: int = DEFAULT_HTTP_PORT
    ws_port: int = DEFAULT_WS_PORT
    serial_port: str = None
    baud_rate: int = DEFAULT_BAUD_RATE
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    allowed_origins: frozenset = frozenset({"*"})
    log_level: str = "INFO"

    def with_overrides(self, **overrides):
        """Return a copy with every non-None override applied"""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)

    def origin_allowed(self, origin):
        return "*" in self.allowed_origins or origin in self.allowed_origins


def _env_number(name, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _parse_origins(raw):
    return frozenset(origin.strip() for origin in raw.split(",") if origin.strip())


def load_config(env_file=None):
    """Load bridge settings from the environment (and .env)"""
    # Without an explicit file, search upward from the working directory
    load_dotenv(env_file or find_dotenv(usecwd=True))

    return BridgeConfig(
        host=os.getenv("BRIDGE_HOST", "0.0.0.0"),
        http_port=_env_number("BRIDGE_HTTP_PORT", DEFAULT_HTTP_PORT, int),
        ws_port=_env_number("BRIDGE_WS_PORT", DEFAULT_WS_PORT, int),
        serial_port=os.getenv("ESP32_SERIAL_PORT") or None,
        baud_rate=_env_number("ESP32_BAUD_RATE", DEFAULT_BAUD_RATE, int),
        reconnect_delay=_env_number("ESP32_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY, float),
        allowed_origins=_parse_origins(os.getenv("ALLOWED_ORIGINS", "*")) or frozenset({"*"}),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
