"""API client configuration with validation, plus the shared config file reader."""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

import yaml

DEFAULT_BASE_URL = "https://www.strava.com/api/v3"
DEFAULT_TOKEN_URL = "https://www.strava.com/oauth/token"


@dataclass
class ClientConfig:
    """Settings for the resilient API client."""

    base_url: str = DEFAULT_BASE_URL
    token_url: str = DEFAULT_TOKEN_URL
    per_page: int = 200
    timeout: int = 30

    # Retry and backoff
    max_retries: int = 5
    min_backoff: float = 1.0
    max_backoff: float = 300.0

    # Quota tracking
    rate_limit_buffer: int = 5
    reset_safety_margin: float = 2.0

    # Connection pooling
    pool_connections: int = 10
    pool_maxsize: int = 10

    user_agent: str = "activity-sync/0.1"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        if not self.base_url or not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL: {self.base_url!r}")

        if not 1 <= self.per_page <= 200:
            raise ValueError("per_page must be between 1 and 200")

        if self.timeout < 1:
            raise ValueError("timeout must be at least 1 second")

        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        if self.min_backoff < 0:
            raise ValueError("min_backoff cannot be negative")

        if self.max_backoff < self.min_backoff:
            raise ValueError("max_backoff must be >= min_backoff")

        if self.rate_limit_buffer < 0:
            raise ValueError("rate_limit_buffer cannot be negative")

        if self.pool_connections < 1 or self.pool_maxsize < 1:
            raise ValueError("connection pool sizes must be at least 1")

        if not self.user_agent or not self.user_agent.strip():
            raise ValueError("user_agent is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create configuration from dictionary with type conversion.

        Args:
            data: Configuration dictionary

        Returns:
            ClientConfig instance
        """
        converted = {}

        for key, value in data.items():
            if key in ("per_page", "timeout", "max_retries", "rate_limit_buffer",
                       "pool_connections", "pool_maxsize"):
                converted[key] = int(value)
            elif key in ("min_backoff", "max_backoff", "reset_safety_margin"):
                converted[key] = float(value)
            elif key in cls.__dataclass_fields__:
                converted[key] = value
            else:
                logging.getLogger(__name__).warning(f"Ignoring unknown client setting: {key}")

        return cls(**converted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "token_url": self.token_url,
            "per_page": self.per_page,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "min_backoff": self.min_backoff,
            "max_backoff": self.max_backoff,
            "rate_limit_buffer": self.rate_limit_buffer,
            "reset_safety_margin": self.reset_safety_margin,
            "pool_connections": self.pool_connections,
            "pool_maxsize": self.pool_maxsize,
            "user_agent": self.user_agent,
        }


ENV_MAPPINGS = {
    "ACTIVITY_SYNC_BASE_URL": "base_url",
    "ACTIVITY_SYNC_TOKEN_URL": "token_url",
    "ACTIVITY_SYNC_PER_PAGE": "per_page",
    "ACTIVITY_SYNC_TIMEOUT": "timeout",
    "ACTIVITY_SYNC_MAX_RETRIES": "max_retries",
    "ACTIVITY_SYNC_MIN_BACKOFF": "min_backoff",
    "ACTIVITY_SYNC_MAX_BACKOFF": "max_backoff",
    "ACTIVITY_SYNC_RATE_LIMIT_BUFFER": "rate_limit_buffer",
    "ACTIVITY_SYNC_USER_AGENT": "user_agent",
}


def load_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Read a JSON or YAML configuration file into a dictionary.

    YAML is used for ``.yaml``/``.yml`` files, JSON otherwise.
    """
    path = Path(config_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in configuration file {config_path}: {e}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}")

    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return data

