"""Domain models shared by the synchronization pipeline.

These are plain dataclasses describing the logical shape the pipeline
consumes and produces. Persistence backends map them to and from their own
records (see ``docsync.storage``).
"""

import hashlib
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional


class ContentKind(str, Enum):
    """How a source document's body is stored."""
    HTML = "html"          # extracted main text
    MARKDOWN = "markdown"  # converted markdown of the content fragment


class VersionState(str, Enum):
    """Release state of a project version."""
    GA = "ga"
    RC = "rc"
    MILESTONE = "milestone"
    SNAPSHOT = "snapshot"


@dataclass
class Project:
    """A documented project (e.g. ``spring-boot``)."""
    slug: str
    name: str
    id: Optional[int] = None
    active: bool = True
    homepage_url: Optional[str] = None


@dataclass
class ProjectVersion:
    """A released or upcoming version of a project."""
    project_id: int
    version: str
    major: int
    minor: int
    patch: Optional[int] = None
    state: VersionState = VersionState.GA
    id: Optional[int] = None
    active: bool = True
    is_latest: bool = False
    release_date: Optional[date] = None
    oss_support_end: Optional[date] = None
    enterprise_support_end: Optional[date] = None
    reference_doc_url: Optional[str] = None
    api_doc_url: Optional[str] = None

    @property
    def is_stable(self) -> bool:
        return self.state == VersionState.GA


@dataclass
class SourceDocument:
    """A documentation link whose content is synchronized.

    ``content_hash`` and ``last_fetched`` mirror what the content store holds
    for this document; the indexer refreshes them on the borrowed instance
    after a successful write.
    """
    id: int
    url: Optional[str]
    version_id: Optional[int] = None
    title: Optional[str] = None
    content_kind: ContentKind = ContentKind.HTML
    active: bool = True
    selector: Optional[str] = None
    content_hash: Optional[str] = None
    last_fetched: Optional[datetime] = None

    def label(self) -> str:
        return f"{self.id} ({self.url})"


def compute_hash(text: str) -> str:
    """SHA-256 hex digest of ``text`` encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IndexedContent:
    """Normalized body of a document plus derived search data.

    Always build through :meth:`from_body` so that ``content_hash`` matches
    ``body``.
    """
    document_id: int
    body: str
    content_hash: str
    content_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    search_text: str = ""

    def __post_init__(self):
        if compute_hash(self.body) != self.content_hash:
            raise ValueError(f"Content hash does not match body for document {self.document_id}")

    @classmethod
    def from_body(cls, document_id: int, body: str, content_type: str,
                  metadata: Optional[Dict[str, Any]] = None,
                  search_text: str = "") -> "IndexedContent":
        return cls(
            document_id=document_id,
            body=body,
            content_hash=compute_hash(body),
            content_type=content_type,
            metadata=dict(metadata or {}),
            search_text=search_text,
        )

    def with_document(self, document_id: int) -> "IndexedContent":
        return replace(self, document_id=document_id)
