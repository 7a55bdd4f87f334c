"""Configuration module for docsync.

Provides the pydantic settings tree and its YAML/environment loaders.
"""

from .settings import (
    CatalogConfig,
    DatabaseConfig,
    FetchConfig,
    IndexingConfig,
    JobConfig,
    LoggingConfig,
    RetryConfig,
    SchedulerConfig,
    SyncSettings,
    load_settings,
)

__all__ = [
    'CatalogConfig',
    'DatabaseConfig',
    'FetchConfig',
    'IndexingConfig',
    'JobConfig',
    'LoggingConfig',
    'RetryConfig',
    'SchedulerConfig',
    'SyncSettings',
    'load_settings',
]
