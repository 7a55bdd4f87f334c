"""Catalog services: version handling and upstream catalog sync."""

from .catalog_sync import CatalogSyncResult, GenerationsCatalogSync
from .versions import (
    AllActiveVersionsPolicy,
    ProjectPageVersionDetector,
    RecentMinorVersionsPolicy,
    find_latest_stable,
    parse_version,
    policy_from_name,
)

__all__ = [
    'CatalogSyncResult',
    'GenerationsCatalogSync',
    'AllActiveVersionsPolicy',
    'ProjectPageVersionDetector',
    'RecentMinorVersionsPolicy',
    'find_latest_stable',
    'parse_version',
    'policy_from_name',
]
