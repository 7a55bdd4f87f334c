"""Persistence interfaces used by the pipeline and the scheduler.

Implementations must be safe to call from worker threads: the indexer runs
store calls on a thread pool.
"""

from datetime import date, datetime
from typing import Iterator, List, Optional, Protocol, runtime_checkable

from ..models import IndexedContent, Project, ProjectVersion, SourceDocument


@runtime_checkable
class VersionCatalog(Protocol):
    """Projects, versions and their documentation links."""

    def list_active_projects(self) -> List[Project]: ...

    def get_project(self, slug: str) -> Optional[Project]: ...

    def upsert_project(self, project: Project) -> Project: ...

    def list_versions(self, project_id: int) -> List[ProjectVersion]: ...

    def list_active_versions(self, project_id: int) -> List[ProjectVersion]: ...

    def upsert_version(self, version: ProjectVersion) -> ProjectVersion:
        """Insert or update by ``(project_id, version)``."""
        ...

    def set_latest_version(self, project_id: int, version_id: int) -> None:
        """Flag ``version_id`` as the project's latest and clear the flag elsewhere."""
        ...

    def list_versions_past_support(self, today: date) -> List[ProjectVersion]:
        """Versions whose enterprise support ended before ``today``, latest excluded."""
        ...

    def list_active_links(self, version_id: int) -> List[SourceDocument]: ...

    def iter_active_links(self, batch_size: int) -> Iterator[List[SourceDocument]]:
        """All active links in id order, in pages of ``batch_size``."""
        ...

    def deactivate_link(self, document_id: int) -> None: ...


@runtime_checkable
class ContentStore(Protocol):
    """Stored document bodies and their hashes."""

    def get_hash(self, document_id: int) -> Optional[str]: ...

    def get_content(self, document_id: int) -> Optional[IndexedContent]: ...

    def store_content(self, document: SourceDocument, content: IndexedContent,
                      fetched_at: datetime) -> None:
        """Write body, hash, metadata and last-fetched together or not at all."""
        ...

    def touch_fetched(self, document_id: int, fetched_at: datetime) -> None:
        """Record a fetch that found no change. May be buffered until :meth:`flush`."""
        ...

    def get_last_fetched(self, document_id: int) -> Optional[datetime]: ...

    def flush(self) -> None:
        """Write out buffered state."""
        ...
