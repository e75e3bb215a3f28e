"""
Configuration management for activity sync.

Settings are layered: dataclass defaults, then a JSON or YAML file, then
environment variables.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from activity_api.config_manager import ENV_MAPPINGS as CLIENT_ENV_MAPPINGS
from activity_api.config_manager import ClientConfig, load_config_file

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    url: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600
    echo_sql: bool = False

    def __post_init__(self):
        if not self.url:
            self.url = self._get_default_url()

    def _get_default_url(self) -> str:
        """Get default database URL from environment."""
        if os.getenv("DATABASE_URL"):
            return os.getenv("DATABASE_URL")

        sqlite_path = os.getenv("SQLITE_PATH", "activities.db")
        return f"sqlite:///{sqlite_path}"

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite:")


@dataclass
class SyncConfig:
    """Activity replication settings."""
    enabled: bool = True
    wait_for_quota: bool = True


@dataclass
class EnrichmentConfig:
    """Zone enrichment batch settings."""
    enabled: bool = True
    batch_size: int = 25
    max_consecutive_rate_limits: int = 3
    pacing_delay: float = 0.1
    batch_pause: float = 0.5
    start_delay: float = 30.0
    max_quota_wait: float = 960.0


@dataclass
class SchedulerConfig:
    """Background worker intervals, in seconds."""
    sync_interval: float = 900.0
    token_refresh_interval: float = 1800.0
    token_refresh_lead: float = 600.0
    join_timeout: float = 10.0


@dataclass
class AppConfig:
    """Top-level configuration for the sync service."""

    client: ClientConfig = field(default_factory=ClientConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = "INFO"

    def __post_init__(self):
        self._validate_config()

    def _validate_config(self):
        errors = []

        if self.enrichment.batch_size <= 0:
            errors.append("enrichment batch_size must be positive")
        if self.enrichment.max_consecutive_rate_limits <= 0:
            errors.append("enrichment max_consecutive_rate_limits must be positive")
        if self.enrichment.pacing_delay < 0 or self.enrichment.batch_pause < 0:
            errors.append("enrichment delays cannot be negative")
        if self.enrichment.start_delay < 0:
            errors.append("enrichment start_delay cannot be negative")
        if self.enrichment.max_quota_wait <= 0:
            errors.append("enrichment max_quota_wait must be positive")
        if self.scheduler.sync_interval <= 0:
            errors.append("scheduler sync_interval must be positive")
        if self.scheduler.token_refresh_interval <= 0:
            errors.append("scheduler token_refresh_interval must be positive")
        if self.scheduler.token_refresh_lead < 0:
            errors.append("scheduler token_refresh_lead cannot be negative")
        if not self.database.url:
            errors.append("database url is required")
        if self.log_level.upper() not in {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append(f"invalid log_level: {self.log_level}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Build nested configuration objects from a plain mapping."""
        kwargs: Dict[str, Any] = {}
        if "client" in data:
            kwargs["client"] = ClientConfig.from_dict(data["client"] or {})
        if "database" in data:
            kwargs["database"] = DatabaseConfig(**(data["database"] or {}))
        if "sync" in data:
            kwargs["sync"] = SyncConfig(**(data["sync"] or {}))
        if "enrichment" in data:
            kwargs["enrichment"] = EnrichmentConfig(**(data["enrichment"] or {}))
        if "scheduler" in data:
            kwargs["scheduler"] = SchedulerConfig(**(data["scheduler"] or {}))
        if "log_level" in data:
            kwargs["log_level"] = str(data["log_level"])
        return cls(**kwargs)

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "AppConfig":
        """Load configuration from a JSON or YAML file."""
        try:
            return cls.from_dict(load_config_file(config_path))
        except FileNotFoundError:
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()
        except TypeError as e:
            raise ValueError(f"Unknown setting in {config_path}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["client"] = self.client.to_dict()
        return data

    def to_file(self, config_path: Union[str, Path]) -> None:
        """Save configuration as YAML or JSON, chosen by file extension."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Configuration saved to {path}")


# env var -> (section, key, converter)
ENV_OVERRIDES = {
    "ACTIVITY_SYNC_SYNC_INTERVAL": ("scheduler", "sync_interval", float),
    "ACTIVITY_SYNC_TOKEN_REFRESH_INTERVAL": ("scheduler", "token_refresh_interval", float),
    "ACTIVITY_SYNC_TOKEN_REFRESH_LEAD": ("scheduler", "token_refresh_lead", float),
    "ACTIVITY_SYNC_NO_SYNC": ("sync", "enabled", lambda v: not _as_bool(v)),
    "ACTIVITY_SYNC_ZONES_ENABLED": ("enrichment", "enabled", _as_bool),
    "ACTIVITY_SYNC_ZONE_BATCH_SIZE": ("enrichment", "batch_size", int),
    "ACTIVITY_SYNC_ZONE_START_DELAY": ("enrichment", "start_delay", float),
    "ACTIVITY_SYNC_MAX_QUOTA_WAIT": ("enrichment", "max_quota_wait", float),
    "DATABASE_URL": ("database", "url", str),
    "DATABASE_ECHO": ("database", "echo_sql", _as_bool),
}


class ConfigManager:
    """Loads and caches the application configuration."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None, use_env_vars: bool = True):
        self.config_path = config_path or os.getenv("ACTIVITY_SYNC_CONFIG")
        self.use_env_vars = use_env_vars
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        data: Dict[str, Any] = {}
        if self.config_path:
            if Path(self.config_path).exists():
                data = load_config_file(self.config_path)
                logger.info(f"Configuration loaded from {self.config_path}")
            else:
                logger.warning(f"Config file not found: {self.config_path}, using defaults")

        if self.use_env_vars:
            self._apply_env_overrides(data)

        self._config = AppConfig.from_dict(data)
        return self._config

    def _apply_env_overrides(self, data: Dict[str, Any]) -> None:
        for env_var, (section, key, convert) in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            data.setdefault(section, {})
            data[section] = dict(data[section] or {})
            data[section][key] = convert(value)
            logger.debug(f"Using environment variable {env_var} for {section}.{key}")

        for env_var, key in CLIENT_ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                data["client"] = dict(data.get("client") or {})
                data["client"][key] = value

        if os.getenv("LOG_LEVEL"):
            data["log_level"] = os.getenv("LOG_LEVEL")

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self.load_config()
        return self._config

    def reload_config(self) -> AppConfig:
        logger.info("Reloading configuration")
        return self.load_config()
