"""
Configuration for the CDP client, browser launcher and retry helper.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_MAX_FRAME_SIZE = 256 * 1024 * 1024

ENV_PREFIX = "MULTI_PLATFORM_"

_TRUTHY = {"1", "true", "yes", "on"}


def _default_profile_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".local", "share", "multi-platform-publish-profile")


@dataclass
class RetryPolicy:
    """Exponential backoff settings.

    ``max_attempts`` counts every call, the first one included, so the
    default of 3 means one call plus two retries. Use ``with_retries`` to
    state the number of retries instead.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    @classmethod
    def with_retries(cls, retries: int, **kwargs) -> RetryPolicy:
        """Policy that retries ``retries`` times after the first failure."""
        return cls(max_attempts=retries + 1, **kwargs)

    @property
    def retries(self) -> int:
        return max(self.max_attempts - 1, 0)

    def delays(self):
        """Yield the sleep before each retry (one fewer than max_attempts)."""
        delay = self.initial_delay
        for _ in range(self.retries):
            yield min(delay, self.max_delay)
            delay *= self.backoff_multiplier


@dataclass
class ClientConfig:
    """Configuration options for connecting to (or launching) Chrome."""

    host: str = "127.0.0.1"
    port: int = 9222
    transport: str = "websocket"
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    connect_attempts: int = 30
    connect_retry_delay: float = 0.2
    port_range_start: int = 9222
    port_range_end: int = 9230
    port_probe_timeout: float = 0.1
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
    chrome_path: Optional[str] = None
    profile_dir: str = field(default_factory=_default_profile_dir)
    headless: bool = False
    debug: bool = False

    def __post_init__(self):
        if self.transport not in ("websocket", "tcp"):
            raise ValueError(f"Unknown transport {self.transport!r}, expected 'websocket' or 'tcp'")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be positive")
        if self.port_range_end <= self.port_range_start:
            raise ValueError("port_range_end must be greater than port_range_start")

    @property
    def connect_policy(self) -> RetryPolicy:
        """Fixed-interval policy used while waiting for a fresh browser to listen."""
        return RetryPolicy(
            max_attempts=self.connect_attempts,
            initial_delay=self.connect_retry_delay,
            max_delay=self.connect_retry_delay,
            backoff_multiplier=1.0,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> ClientConfig:
        """Build a config from MULTI_PLATFORM_* environment variables."""
        env = os.environ if environ is None else environ
        values = {}

        if env.get(ENV_PREFIX + "CHROME_PATH"):
            values["chrome_path"] = env[ENV_PREFIX + "CHROME_PATH"]
        if env.get(ENV_PREFIX + "PROFILE_DIR"):
            values["profile_dir"] = env[ENV_PREFIX + "PROFILE_DIR"]
        if env.get(ENV_PREFIX + "CDP_HOST"):
            values["host"] = env[ENV_PREFIX + "CDP_HOST"]
        if env.get(ENV_PREFIX + "CDP_PORT"):
            values["port"] = int(env[ENV_PREFIX + "CDP_PORT"])
        if env.get(ENV_PREFIX + "CALL_TIMEOUT"):
            values["call_timeout"] = float(env[ENV_PREFIX + "CALL_TIMEOUT"])
        if env.get(ENV_PREFIX + "DEBUG"):
            values["debug"] = env[ENV_PREFIX + "DEBUG"].strip().lower() in _TRUTHY

        values.update(overrides)
        return cls(**values)
