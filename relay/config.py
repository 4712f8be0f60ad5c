"""
Environment-driven configuration for the relay server.

Every setting can be overridden with a ``RELAY_``-prefixed environment
variable, e.g. ``RELAY_ALLOW_ROOM_CHANGE=true`` or ``RELAY_PORT=9000``.

Usage:
    from relay.config import get_settings

    settings = get_settings()
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import constants

__all__ = ["RelaySettings", "get_settings", "reset_settings"]


class RelaySettings(BaseSettings):
    """Runtime policy and limits for the relay"""

    model_config = SettingsConfigDict(env_prefix="RELAY_", extra="ignore")

    host: str = constants.DEFAULT_HOST
    port: int = Field(default=constants.DEFAULT_PORT, ge=1, le=65535)

    keepalive_interval: float = Field(default=constants.KEEPALIVE_INTERVAL_SECONDS, gt=0)
    max_packets_per_window: int = Field(default=constants.MAX_PACKETS_PER_WINDOW, ge=1)
    max_packet_size: int = Field(default=constants.MAX_PACKET_SIZE_BYTES, ge=1)
    max_username_size: int = Field(default=constants.MAX_USERNAME_SIZE_BYTES, ge=1)

    allow_username_change: bool = constants.ALLOW_USERNAME_CHANGE
    allow_room_change: bool = constants.ALLOW_ROOM_CHANGE
    allow_cross_room_messaging: bool = constants.ALLOW_CROSS_ROOM_MESSAGING

    auth_required: bool = constants.AUTH_REQUIRED
    auth_url: str = constants.AUTH_URL
    auth_timeout: float = Field(default=constants.AUTH_TIMEOUT_SECONDS, gt=0)

    room_idle_ticks: int = Field(default=constants.ROOM_IDLE_TICKS, ge=0)
    outbox_limit: int = Field(default=constants.OUTBOX_LIMIT, ge=0)

    log_level: str = constants.LOG_LEVEL

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @property
    def hard_packet_cap(self) -> int:
        return self.max_packets_per_window * constants.HARD_CAP_MULTIPLIER


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return the process-wide settings, loading them from the environment once"""
    return RelaySettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment"""
    get_settings.cache_clear()
