from dataclasses import dataclass
from typing import Optional

DEFAULT_CONFIG_PATH = "config.txt"

DIAL_ATTEMPTS = 5
BACKOFF_UNIT = 1.0  # seconds; attempt i waits i * BACKOFF_UNIT
CONNECT_TIMEOUT = 5.0
HANDSHAKE_TIMEOUT = 5.0
LISTEN_BACKLOG = 16


@dataclass
class Settings:
    dial_attempts: int = DIAL_ATTEMPTS
    backoff_unit: float = BACKOFF_UNIT
    connect_timeout: float = CONNECT_TIMEOUT
    handshake_timeout: float = HANDSHAKE_TIMEOUT
    # None keeps established channels blocking forever while idle
    read_timeout: Optional[float] = None
    listen_backlog: int = LISTEN_BACKLOG

    def __post_init__(self):
        if self.dial_attempts < 1:
            raise ValueError("dial_attempts must be at least 1")
        if self.backoff_unit < 0:
            raise ValueError("backoff_unit must be >= 0")
        if self.read_timeout is not None and self.read_timeout <= 0:
            raise ValueError("read_timeout must be positive or None")
