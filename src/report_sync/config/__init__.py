from .settings import (
    ReportSyncConfig,
    ApiConfig,
    SyncConfig,
    SchedulerConfig,
    StorageConfig,
    PublicCollectionConfig,
    AccountConfig,
    LoggingConfig,
    HealthConfig,
    load_config,
    parse_config,
)

__all__ = [
    "ReportSyncConfig",
    "ApiConfig",
    "SyncConfig",
    "SchedulerConfig",
    "StorageConfig",
    "PublicCollectionConfig",
    "AccountConfig",
    "LoggingConfig",
    "HealthConfig",
    "load_config",
    "parse_config",
]
