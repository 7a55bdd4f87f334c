"""Exception hierarchy for docsync."""

from typing import Optional


class DocSyncError(Exception):
    """Base class for all docsync errors."""
    pass


class ConfigurationError(DocSyncError):
    """Raised when settings cannot be loaded or fail validation."""
    pass


class InvalidUrlError(DocSyncError):
    """Raised when a URL is malformed or outside the allow-listed domains."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Invalid documentation URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class IndexingError(DocSyncError):
    """Raised when indexing a single document fails unexpectedly.

    A fetch that yields no content is *not* an ``IndexingError``; it is a
    regular failed outcome.
    """

    def __init__(self, document_id: int, url: Optional[str], cause: BaseException):
        super().__init__(f"Failed to index document {document_id} ({url}): {cause}")
        self.document_id = document_id
        self.url = url
        self.cause = cause
