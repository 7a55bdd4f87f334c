"""Pipelines package for docsync.

Provides fetching, HTML to Markdown conversion and incremental indexing.
"""

from .fetcher import (
    DocumentFetcher,
    EmptyContent,
    FetchedContent,
    FetchError,
    FetchErrorKind,
    FetchResult,
    content_hash,
    has_changed,
)
from .converter import HtmlToMarkdownConverter
from .indexer import (
    BatchStats,
    DocumentationIndexer,
    IndexOutcome,
    IndexResult,
    classify_content_type,
    generate_search_representation,
)

__all__ = [
    # Fetcher
    'DocumentFetcher',
    'EmptyContent',
    'FetchedContent',
    'FetchError',
    'FetchErrorKind',
    'FetchResult',
    'content_hash',
    'has_changed',

    # Converter
    'HtmlToMarkdownConverter',

    # Indexer
    'BatchStats',
    'DocumentationIndexer',
    'IndexOutcome',
    'IndexResult',
    'classify_content_type',
    'generate_search_representation',
]
