"""Configuration management for nodectl.

Settings are resolved with the following precedence:
1. Explicitly passed parameters
2. Configuration file (YAML)
3. Environment variables (``NODECTL_*``, optionally from a ``.env`` file)
4. Default values
"""
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger("nodectl.config")

DEFAULT_CONFIG_PATHS = [
    Path("/etc/nodectl/config.yaml"),
    Path("~/.config/nodectl/config.yaml").expanduser(),
    Path("nodectl.yaml").absolute(),
]


class Config:
    """Environment-driven defaults."""

    API_KEY: str = os.getenv("NODECTL_API_KEY", "nodectl-secret")

    # Timeouts (in seconds)
    SSH_CONNECT_TIMEOUT: int = int(os.getenv("NODECTL_SSH_CONNECT_TIMEOUT", "10"))
    BATCH_TIMEOUT: int = int(os.getenv("NODECTL_BATCH_TIMEOUT", "120"))
    PROBE_TIMEOUT: int = int(os.getenv("NODECTL_PROBE_TIMEOUT", "20"))
    BUILD_TIMEOUT: int = int(os.getenv("NODECTL_BUILD_TIMEOUT", "600"))

    # Status probe retries
    PROBE_ATTEMPTS: int = int(os.getenv("NODECTL_PROBE_ATTEMPTS", "10"))
    PROBE_RETRY_DELAY: float = float(os.getenv("NODECTL_PROBE_RETRY_DELAY", "1.0"))
    PROBE_DELAYED_ATTEMPTS: int = int(os.getenv("NODECTL_PROBE_DELAYED_ATTEMPTS", "3"))

    # Completion watcher
    WATCH_CEILING: int = int(os.getenv("NODECTL_WATCH_CEILING", "1800"))  # 30 minutes
    WATCH_INTERVAL: int = int(os.getenv("NODECTL_WATCH_INTERVAL", "10"))

    # Leases
    LEASE_TTL: float = float(os.getenv("NODECTL_LEASE_TTL", "900"))
    LEASE_WAIT: float = float(os.getenv("NODECTL_LEASE_WAIT", "60"))

    # Background tasks
    MAX_WORKERS: int = int(os.getenv("NODECTL_MAX_WORKERS", "8"))
    TASK_RETENTION: int = int(os.getenv("NODECTL_TASK_RETENTION", "500"))  # finished task records kept

    # Logging
    LOG_LEVEL: str = os.getenv("NODECTL_LOG_LEVEL", "INFO").upper()
    LOG_FILE: Optional[str] = os.getenv("NODECTL_LOG_FILE") or None

    # Security
    REDACT_KEYS: tuple = ("password", "secret", "token", "certificate_key", "join_command")


class SSHSettings(BaseModel):
    """SSH transport settings."""
    connect_timeout: int = Field(default=Config.SSH_CONNECT_TIMEOUT, description="Per-hop connect timeout in seconds")
    batch_timeout: int = Field(default=Config.BATCH_TIMEOUT, description="Default budget for one command batch")
    build_timeout: int = Field(default=Config.BUILD_TIMEOUT, description="Budget for long synchronous installs")


class ProbeSettings(BaseModel):
    """Status poller settings."""
    attempts: int = Field(default=Config.PROBE_ATTEMPTS, ge=1)
    timeout: int = Field(default=Config.PROBE_TIMEOUT, ge=1)
    retry_delay: float = Field(default=Config.PROBE_RETRY_DELAY, ge=0)
    delayed_attempts: int = Field(default=Config.PROBE_DELAYED_ATTEMPTS, ge=0)


class WatchSettings(BaseModel):
    """Completion watcher settings."""
    ceiling: int = Field(default=Config.WATCH_CEILING, ge=1, description="Seconds to wait for a completion marker")
    interval: int = Field(default=Config.WATCH_INTERVAL, ge=1, description="Remote grep interval in seconds")


class LeaseSettings(BaseModel):
    """Lease settings."""
    ttl: float = Field(default=Config.LEASE_TTL, gt=0, description="Seconds after which a held lease is considered abandoned")
    wait: float = Field(default=Config.LEASE_WAIT, ge=0, description="Seconds to wait for a busy lease")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default=Config.LOG_LEVEL)
    file: Optional[str] = Field(default=Config.LOG_FILE, description="Path to log file (if None, logs to stdout only)")
    max_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)

    @field_validator('level')
    @classmethod
    def upper_level(cls, v: str) -> str:
        """Normalise the level name."""
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {v}")
        return level


class Settings(BaseModel):
    """Top-level nodectl settings."""
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    lease: LeaseSettings = Field(default_factory=LeaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    max_workers: int = Field(default=Config.MAX_WORKERS, ge=1)
    task_retention: int = Field(default=Config.TASK_RETENTION, ge=1, description="Finished task records kept for status queries")

    model_config = {"extra": "ignore"}

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> 'Settings':
        """Load settings from a YAML file, falling back to the default paths."""
        config_data: Dict[str, Any] = {}

        if config_path:
            config_path = Path(config_path).expanduser().absolute()
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            config_data = cls._load_config_file(config_path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    break

        return cls(**config_data)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}

    def save(self, path: Union[str, Path]) -> None:
        """Save settings to a YAML file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f, default_flow_style=False, sort_keys=False)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load(config_path)
    return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Replace the global settings instance (``None`` forces a reload)."""
    global _settings
    _settings = settings
