"""Persistence for docsync: protocols plus in-memory and SQL backends."""

from .base import ContentStore, VersionCatalog
from .memory import InMemoryCatalog, InMemoryContentStore

__all__ = [
    'ContentStore',
    'VersionCatalog',
    'InMemoryCatalog',
    'InMemoryContentStore',
]
