"""Environment driven configuration.

All settings are read once at startup; the receiver supports no runtime
reconfiguration.  Command line flags in :mod:`tvreceiver.app` override the
values loaded here.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from .types import Identity
from .utils import env_bool

DEFAULT_SIGNALING_URL = "ws://192.168.0.41:8080"
DEFAULT_TV_ID = "tv-1"
DEFAULT_TV_NAME = "AndroidTV"


@dataclass
class Settings:
    """Runtime settings for the receiver."""

    # Signaling
    signaling_url: str = DEFAULT_SIGNALING_URL
    tv_id: str = DEFAULT_TV_ID
    tv_name: Optional[str] = DEFAULT_TV_NAME
    reconnect: bool = False

    # ICE servers
    stun_url: Optional[str] = None
    turn_url: Optional[str] = None
    turn_user: Optional[str] = None
    turn_pass: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    # Metrics (0 disables the endpoint)
    metrics_port: int = 0

    # Media
    record_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from ``TVR_*`` environment variables."""

        return cls(
            signaling_url=os.getenv("TVR_SIGNALING_URL", DEFAULT_SIGNALING_URL),
            tv_id=os.getenv("TVR_ID", DEFAULT_TV_ID),
            tv_name=os.getenv("TVR_NAME", DEFAULT_TV_NAME) or None,
            reconnect=env_bool("TVR_RECONNECT", False),
            stun_url=os.getenv("TVR_STUN_URL") or None,
            turn_url=os.getenv("TVR_TURN_URL") or None,
            turn_user=os.getenv("TVR_TURN_USER") or None,
            turn_pass=os.getenv("TVR_TURN_PASS") or None,
            log_level=os.getenv("TVR_LOGLEVEL", "INFO"),
            log_format=os.getenv("TVR_LOG_FORMAT", "text").lower(),
            log_file=os.getenv("TVR_LOGFILE") or None,
            metrics_port=int(os.getenv("TVR_METRICS_PORT", "0")),
            record_path=os.getenv("TVR_RECORD_PATH") or None,
        )

    def validate(self) -> List[str]:
        """Validate settings and return a list of error messages, empty if valid."""
        errors = []
        if not self.signaling_url.startswith(("ws://", "wss://")):
            errors.append("TVR_SIGNALING_URL must start with ws:// or wss://")
        if not self.tv_id:
            errors.append("TVR_ID must not be empty")
        if self.turn_url and not (self.turn_user and self.turn_pass):
            errors.append("TVR_TURN_USER and TVR_TURN_PASS are required with TVR_TURN_URL")
        if self.metrics_port < 0 or self.metrics_port > 65535:
            errors.append("TVR_METRICS_PORT must be between 0 and 65535")
        if self.log_format not in ("text", "json"):
            errors.append("TVR_LOG_FORMAT must be 'text' or 'json'")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append("TVR_LOGLEVEL must be valid logging level")
        return errors

    @property
    def identity(self) -> Identity:
        """The receiver identity announced on every connection."""
        return Identity(self.tv_id, self.tv_name)


__all__ = ["Settings", "DEFAULT_SIGNALING_URL", "DEFAULT_TV_ID", "DEFAULT_TV_NAME"]
