"""
Configuration Management
========================

Hierarchical settings for buckets and their shared store:
- Defaults
- YAML configuration file
- Environment variables (FLEETBUCKET_*)
- Runtime overrides
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file if it exists
load_dotenv()


class RedisSettings(BaseModel):
    """Shared store connection."""
    socket_path: Optional[str] = Field(default=None, description="Redis UNIX socket path")
    url: Optional[str] = Field(default="redis://localhost:6379/0", description="Redis URL, used when no socket is set")
    namespace: str = Field(default="", description="Prefix applied to every bucket key")
    socket_timeout: Optional[float] = Field(default=None, description="Client socket timeout in seconds")
    poll_interval: float = Field(default=0.05, gt=0, description="Seconds between RPOP attempts while waiting for a token")


class BucketDefaults(BaseModel):
    """Defaults applied to buckets built from settings."""
    capacity: int = Field(default=10, gt=0, description="Maximum resident tokens")
    cadence: float = Field(default=1.0, gt=0, description="Refill interval in seconds")
    fencing: bool = Field(default=True, description="Tag leases with an owner token")
    poll_interval: float = Field(default=0.5, gt=0, description="Longest single blocking pop in seconds")


class Settings(BaseModel):
    """Main settings object."""
    redis: RedisSettings = Field(default_factory=RedisSettings)
    bucket: BucketDefaults = Field(default_factory=BucketDefaults)
    logging_level: str = Field(default="INFO", description="Logging level")
    log_dir: Optional[str] = Field(default=None, description="Directory for rotating log files")


_ENV_FIELDS = {
    "FLEETBUCKET_REDIS_SOCKET": ("redis", "socket_path", str),
    "FLEETBUCKET_REDIS_URL": ("redis", "url", str),
    "FLEETBUCKET_REDIS_NAMESPACE": ("redis", "namespace", str),
    "FLEETBUCKET_REDIS_TIMEOUT": ("redis", "socket_timeout", float),
    "FLEETBUCKET_REDIS_POLL_INTERVAL": ("redis", "poll_interval", float),
    "FLEETBUCKET_CAPACITY": ("bucket", "capacity", int),
    "FLEETBUCKET_CADENCE": ("bucket", "cadence", float),
    "FLEETBUCKET_POLL_INTERVAL": ("bucket", "poll_interval", float),
}


class ConfigManager:
    """
    Settings hierarchy (highest to lowest priority):
    1. Runtime overrides
    2. Environment variables (FLEETBUCKET_*) and .env file
    3. YAML file (explicit path or FLEETBUCKET_CONFIG)
    4. Model defaults
    """

    @staticmethod
    def _load_yaml(file_path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if file_path is None or not file_path.exists():
            return {}

        with open(file_path, "r") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _load_env() -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        for name, (section, field, cast) in _ENV_FIELDS.items():
            raw = os.getenv(name)
            if raw:
                config.setdefault(section, {})[field] = cast(raw)

        if os.getenv("FLEETBUCKET_FENCING"):
            config.setdefault("bucket", {})["fencing"] = os.getenv("FLEETBUCKET_FENCING").lower() == "true"
        if os.getenv("FLEETBUCKET_LOG_LEVEL"):
            config["logging_level"] = os.getenv("FLEETBUCKET_LOG_LEVEL")
        if os.getenv("FLEETBUCKET_LOG_DIR"):
            config["log_dir"] = os.getenv("FLEETBUCKET_LOG_DIR")

        return config

    @staticmethod
    def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigManager._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def load(config_path: Optional[str] = None, override: Optional[Dict] = None) -> Settings:
        """
        Load settings with hierarchy.

        Args:
            config_path: YAML file to read; falls back to FLEETBUCKET_CONFIG
            override: Runtime overrides

        Returns:
            Validated settings object
        """
        path = config_path or os.getenv("FLEETBUCKET_CONFIG")
        config = ConfigManager._load_yaml(Path(path) if path else None)

        config = ConfigManager._deep_merge(config, ConfigManager._load_env())

        if override:
            config = ConfigManager._deep_merge(config, override)

        return Settings(**config)
