"""Thread-safe in-memory catalog and content store.

Used by tests and by ``docsync fetch``-style one-off runs that have no
database.
"""

import itertools
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, Iterator, List, Optional, Tuple

from ..models import IndexedContent, Project, ProjectVersion, SourceDocument


class InMemoryCatalog:
    """Dictionary-backed :class:`~docsync.storage.base.VersionCatalog`."""

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.projects: Dict[int, Project] = {}
        self.versions: Dict[int, ProjectVersion] = {}
        self.links: Dict[int, SourceDocument] = {}

    def _next_id(self) -> int:
        return next(self._ids)

    # Projects

    def list_active_projects(self) -> List[Project]:
        with self._lock:
            return [p for p in self.projects.values() if p.active]

    def get_project(self, slug: str) -> Optional[Project]:
        with self._lock:
            return next((p for p in self.projects.values() if p.slug == slug), None)

    def upsert_project(self, project: Project) -> Project:
        with self._lock:
            existing = self.get_project(project.slug)
            if existing is not None:
                project = replace(project, id=existing.id)
            elif project.id is None:
                project = replace(project, id=self._next_id())
            self.projects[project.id] = project
            return project

    # Versions

    def list_versions(self, project_id: int) -> List[ProjectVersion]:
        with self._lock:
            return [v for v in self.versions.values() if v.project_id == project_id]

    def list_active_versions(self, project_id: int) -> List[ProjectVersion]:
        return [v for v in self.list_versions(project_id) if v.active]

    def upsert_version(self, version: ProjectVersion) -> ProjectVersion:
        with self._lock:
            existing = next((v for v in self.versions.values()
                             if v.project_id == version.project_id and v.version == version.version), None)
            if existing is not None:
                version = replace(version, id=existing.id)
            elif version.id is None:
                version = replace(version, id=self._next_id())
            self.versions[version.id] = version
            return version

    def set_latest_version(self, project_id: int, version_id: int) -> None:
        with self._lock:
            for v in self.list_versions(project_id):
                v.is_latest = v.id == version_id

    def list_versions_past_support(self, today: date) -> List[ProjectVersion]:
        with self._lock:
            return [v for v in self.versions.values()
                    if v.enterprise_support_end is not None
                    and v.enterprise_support_end < today
                    and not v.is_latest]

    # Links

    def add_link(self, document: SourceDocument) -> SourceDocument:
        with self._lock:
            self.links[document.id] = document
            return document

    def list_active_links(self, version_id: int) -> List[SourceDocument]:
        with self._lock:
            return [d for d in self.links.values() if d.version_id == version_id and d.active]

    def iter_active_links(self, batch_size: int) -> Iterator[List[SourceDocument]]:
        with self._lock:
            active = sorted((d for d in self.links.values() if d.active), key=lambda d: d.id)
        for start in range(0, len(active), batch_size):
            yield active[start:start + batch_size]

    def deactivate_link(self, document_id: int) -> None:
        with self._lock:
            document = self.links.get(document_id)
            if document is not None:
                document.active = False


class InMemoryContentStore:
    """Dictionary-backed :class:`~docsync.storage.base.ContentStore`.

    Fetch timestamps of unchanged documents are buffered and only become
    visible after :meth:`flush`, mirroring the SQL store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.contents: Dict[int, IndexedContent] = {}
        self.last_fetched: Dict[int, datetime] = {}
        self._pending_touches: List[Tuple[int, datetime]] = []
        self.store_count = 0
        self.touch_count = 0
        self.flush_count = 0

    def get_hash(self, document_id: int) -> Optional[str]:
        with self._lock:
            content = self.contents.get(document_id)
            return content.content_hash if content else None

    def get_content(self, document_id: int) -> Optional[IndexedContent]:
        with self._lock:
            return self.contents.get(document_id)

    def store_content(self, document: SourceDocument, content: IndexedContent,
                      fetched_at: datetime) -> None:
        with self._lock:
            self.contents[document.id] = content
            self.last_fetched[document.id] = fetched_at
            self.store_count += 1

    def touch_fetched(self, document_id: int, fetched_at: datetime) -> None:
        with self._lock:
            self._pending_touches.append((document_id, fetched_at))
            self.touch_count += 1

    def get_last_fetched(self, document_id: int) -> Optional[datetime]:
        with self._lock:
            return self.last_fetched.get(document_id)

    @property
    def pending_touches(self) -> int:
        with self._lock:
            return len(self._pending_touches)

    def flush(self) -> None:
        with self._lock:
            for document_id, fetched_at in self._pending_touches:
                self.last_fetched[document_id] = fetched_at
            self._pending_touches.clear()
            self.flush_count += 1
