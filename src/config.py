"""
Configuration module for the cloud check service.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "director"
    user: str = "director"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "director"),
            user=os.getenv("DB_USER", "director"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class CloudConfig:
    """IaaS facade used by the HTTP cloud adapter."""

    api_url: str = "http://localhost:25555/cloud"
    token: str = field(default="", repr=False)
    timeout: float = 60  # seconds per cloud call

    @classmethod
    def from_env(cls):
        return cls(
            api_url=os.getenv("CLOUD_API_URL", "http://localhost:25555/cloud"),
            token=os.getenv("CLOUD_API_TOKEN", ""),
            timeout=float(os.getenv("CLOUD_TIMEOUT", "60")),
        )


@dataclass
class AgentConfig:
    """Endpoint used to reach VM agents."""

    api_url: str = "http://localhost:25555"
    timeout: float = 30  # seconds per agent message

    @classmethod
    def from_env(cls):
        return cls(
            api_url=os.getenv("AGENT_API_URL", "http://localhost:25555"),
            timeout=float(os.getenv("AGENT_TIMEOUT", "30")),
        )


@dataclass
class EngineConfig:
    """Cloud check engine configuration."""

    check_interval: int = 300  # seconds between automatic scans
    auto_resolve: bool = False  # False: periodic runs only report
    max_concurrent_resolutions: int = 1
    strict_disk_delete: bool = False

    @classmethod
    def from_env(cls):
        return cls(
            check_interval=int(os.getenv("CHECK_INTERVAL", "300")),
            auto_resolve=_env_bool("AUTO_RESOLVE"),
            max_concurrent_resolutions=int(
                os.getenv("MAX_CONCURRENT_RESOLUTIONS", "1")
            ),
            strict_disk_delete=_env_bool("STRICT_DISK_DELETE"),
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    cloud: CloudConfig
    agent: AgentConfig
    engine: EngineConfig
    api: APIConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            cloud=CloudConfig.from_env(),
            agent=AgentConfig.from_env(),
            engine=EngineConfig.from_env(),
            api=APIConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            cloud=CloudConfig(),
            agent=AgentConfig(),
            engine=EngineConfig(),
            api=APIConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
