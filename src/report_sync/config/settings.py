"""Configuration settings for the report sync service."""

import os
import yaml
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class ApiConfig:
    """Remote trading API configuration."""
    rest_base_url: str = "https://api.bitfinex.com"
    rate_limit_requests_per_minute: int = 90
    request_timeout_seconds: int = 30
    user_agent: str = "report-sync/1.0"


@dataclass
class SyncConfig:
    """Synchronization engine configuration."""
    collections: List[str] = field(default_factory=lambda: ["_ALL"])
    record_cap: int = 10000000
    rate_limit_delay_seconds: float = 80.0
    nonce_delay_seconds: float = 1.0
    max_rate_limit_retries: int = 2
    max_nonce_retries: int = 20
    hook_timeout_seconds: Optional[float] = None


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""
    enabled: bool = False
    sync_interval: str = "1h"


@dataclass
class StorageConfig:
    """Storage configuration."""
    storage_type: str = "memory"  # "memory" or "postgres"
    host: str = "localhost"
    port: int = 5432
    user: str = "report_sync"
    password: Optional[str] = None
    name: str = "report_sync"
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class PublicCollectionConfig:
    """Start date of one symbol of a configurable public collection."""
    conf_name: str
    symbol: str
    start: int = 0


@dataclass
class AccountConfig:
    """API credentials seeded into storage at startup."""
    account_id: str
    api_key: str
    api_secret: str


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"
    output: str = "stdout"


@dataclass
class HealthConfig:
    """Health check configuration."""
    enabled: bool = False
    port: int = 8080
    host: str = "0.0.0.0"


@dataclass
class ReportSyncConfig:
    """Main configuration for the report sync service."""
    api: ApiConfig = field(default_factory=ApiConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    public_collections: List[PublicCollectionConfig] = field(default_factory=list)
    accounts: List[AccountConfig] = field(default_factory=list)


def load_config(config_file: str) -> ReportSyncConfig:
    """Load configuration from YAML file."""

    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    return parse_config(config_data)


def parse_config(config_data: Dict[str, Any]) -> ReportSyncConfig:
    """Build configuration objects from an already-loaded mapping."""

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    return ReportSyncConfig(
        api=ApiConfig(**config_data.get('api', {})),
        sync=SyncConfig(**config_data.get('sync', {})),
        scheduler=SchedulerConfig(**config_data.get('scheduler', {})),
        storage=StorageConfig(**config_data.get('storage', {})),
        logging=LoggingConfig(**config_data.get('logging', {})),
        health=HealthConfig(**config_data.get('health', {})),
        public_collections=[
            PublicCollectionConfig(**item)
            for item in config_data.get('public_collections') or []
        ],
        accounts=[
            AccountConfig(**item)
            for item in config_data.get('accounts') or []
        ]
    )


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
