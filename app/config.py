"""Application configuration loaded from environment variables.

A ``.env`` file in the working directory is honoured. Every section reads its
values lazily when ``Config()`` is built, so tests can patch the environment
and construct a fresh instance.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value or None


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class SystemConfig:
    """Logging and process settings."""

    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: _env_str("LOG_FORMAT", "console"))
    log_dir: str = field(default_factory=lambda: _env_str("LOG_DIR", "logs"))


@dataclass
class ServerConfig:
    """HTTP / WebSocket server settings."""

    host: str = field(default_factory=lambda: _env_str("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))
    webhook_path: str = field(default_factory=lambda: _env_str("WEBHOOK_PATH", "/webhook"))
    socket_path: str = field(default_factory=lambda: _env_str("SOCKET_PATH", "/socket"))
    static_dir: Optional[str] = field(default_factory=lambda: _env_str("STATIC_DIR", "public"))


@dataclass
class CallingConfig:
    """Calling API (Graph API /calls) settings."""

    api_base: str = field(
        default_factory=lambda: _env_str("GRAPH_API_BASE", "https://graph.facebook.com")
    )
    api_version: str = field(default_factory=lambda: _env_str("GRAPH_API_VERSION", "v18.0"))
    phone_number_id: Optional[str] = field(default_factory=lambda: _env_optional("PHONE_NUMBER_ID"))
    access_token: Optional[str] = field(default_factory=lambda: _env_optional("ACCESS_TOKEN"))
    verify_token: Optional[str] = field(default_factory=lambda: _env_optional("VERIFY_TOKEN"))
    request_timeout: float = field(default_factory=lambda: _env_float("CALLS_REQUEST_TIMEOUT", 10.0))

    @property
    def calls_url(self) -> str:
        """Endpoint for call actions."""
        return f"{self.api_base.rstrip('/')}/{self.api_version}/{self.phone_number_id}/calls"


@dataclass
class RtcConfig:
    """Peer connection settings."""

    stun_url: str = field(
        default_factory=lambda: _env_str("STUN_URL", "stun:stun.relay.metered.ca:80")
    )
    ice_config_file: Optional[str] = field(default_factory=lambda: _env_optional("ICE_CONFIG_FILE"))
    remote_track_timeout: float = field(
        default_factory=lambda: _env_float("REMOTE_TRACK_TIMEOUT", 10.0)
    )
    accept_settle_delay: float = field(
        default_factory=lambda: _env_float("ACCEPT_SETTLE_DELAY", 1.0)
    )


@dataclass
class Config:
    """Top-level configuration."""

    system: SystemConfig = field(default_factory=SystemConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    calling: CallingConfig = field(default_factory=CallingConfig)
    rtc: RtcConfig = field(default_factory=RtcConfig)

    def validate(self) -> None:
        """Fail fast on settings the bridge cannot run without.

        Raises:
            ValueError: If a required setting is missing
        """
        missing = [
            name
            for name, value in (
                ("PHONE_NUMBER_ID", self.calling.phone_number_id),
                ("ACCESS_TOKEN", self.calling.access_token),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")


config = Config()
