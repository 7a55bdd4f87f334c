"""SQLAlchemy-backed catalog and content store."""

import logging
import threading
from datetime import date, datetime
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import IndexedContent, Project, ProjectVersion, SourceDocument
from .models import Base, ContentRecord, LinkRecord, ProjectRecord, VersionRecord

logger = logging.getLogger(__name__)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite is shared across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.info(f"Database schema ready at {engine.url.render_as_string(hide_password=True)}")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class SqlCatalog:
    """:class:`~docsync.storage.base.VersionCatalog` over the SQL schema."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_active_projects(self) -> List[Project]:
        with self.session_factory() as session:
            rows = session.scalars(select(ProjectRecord).where(ProjectRecord.active.is_(True))
                                   .order_by(ProjectRecord.id))
            return [r.to_model() for r in rows]

    def get_project(self, slug: str) -> Optional[Project]:
        with self.session_factory() as session:
            row = session.scalars(select(ProjectRecord).where(ProjectRecord.slug == slug)).first()
            return row.to_model() if row else None

    def upsert_project(self, project: Project) -> Project:
        with self.session_factory.begin() as session:
            row = session.scalars(select(ProjectRecord).where(ProjectRecord.slug == project.slug)).first()
            if row is None:
                row = ProjectRecord(slug=project.slug)
                session.add(row)
            row.name = project.name
            row.active = project.active
            row.homepage_url = project.homepage_url
            session.flush()
            return row.to_model()

    def list_versions(self, project_id: int) -> List[ProjectVersion]:
        with self.session_factory() as session:
            rows = session.scalars(select(VersionRecord).where(VersionRecord.project_id == project_id)
                                   .order_by(VersionRecord.id))
            return [r.to_model() for r in rows]

    def list_active_versions(self, project_id: int) -> List[ProjectVersion]:
        return [v for v in self.list_versions(project_id) if v.active]

    def upsert_version(self, version: ProjectVersion) -> ProjectVersion:
        with self.session_factory.begin() as session:
            row = session.scalars(select(VersionRecord).where(
                VersionRecord.project_id == version.project_id,
                VersionRecord.version == version.version,
            )).first()
            if row is None:
                row = VersionRecord(project_id=version.project_id, version=version.version)
                session.add(row)
            row.update_from(version)
            session.flush()
            return row.to_model()

    def set_latest_version(self, project_id: int, version_id: int) -> None:
        with self.session_factory.begin() as session:
            session.execute(update(VersionRecord)
                            .where(VersionRecord.project_id == project_id)
                            .values(is_latest=VersionRecord.id == version_id))

    def list_versions_past_support(self, today: date) -> List[ProjectVersion]:
        with self.session_factory() as session:
            rows = session.scalars(select(VersionRecord).where(
                VersionRecord.enterprise_support_end.is_not(None),
                VersionRecord.enterprise_support_end < today,
                VersionRecord.is_latest.is_(False),
            ))
            return [r.to_model() for r in rows]

    def add_link(self, document: SourceDocument) -> SourceDocument:
        with self.session_factory.begin() as session:
            row = LinkRecord(
                id=document.id,
                version_id=document.version_id,
                url=document.url,
                title=document.title,
                content_kind=document.content_kind.value,
                selector=document.selector,
                active=document.active,
            )
            session.add(row)
            session.flush()
            return row.to_model()

    def list_active_links(self, version_id: int) -> List[SourceDocument]:
        with self.session_factory() as session:
            rows = session.scalars(select(LinkRecord).where(
                LinkRecord.version_id == version_id,
                LinkRecord.active.is_(True),
            ).order_by(LinkRecord.id))
            return [r.to_model() for r in rows]

    def iter_active_links(self, batch_size: int) -> Iterator[List[SourceDocument]]:
        last_id = 0
        while True:
            with self.session_factory() as session:
                rows = list(session.scalars(select(LinkRecord).where(
                    LinkRecord.active.is_(True),
                    LinkRecord.id > last_id,
                ).order_by(LinkRecord.id).limit(batch_size)))
                page = [r.to_model() for r in rows]
            if not page:
                return
            yield page
            last_id = page[-1].id

    def deactivate_link(self, document_id: int) -> None:
        with self.session_factory.begin() as session:
            session.execute(update(LinkRecord).where(LinkRecord.id == document_id).values(active=False))


class SqlContentStore:
    """:class:`~docsync.storage.base.ContentStore` over the SQL schema.

    ``store_content`` commits link hash, last-fetched and the content row in
    one transaction. Fetch timestamps of unchanged documents are buffered
    and written on :meth:`flush`.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._lock = threading.Lock()
        self._pending_touches: List[Tuple[int, datetime]] = []

    def get_hash(self, document_id: int) -> Optional[str]:
        with self.session_factory() as session:
            return session.scalars(select(ContentRecord.content_hash)
                                   .where(ContentRecord.link_id == document_id)).first()

    def get_content(self, document_id: int) -> Optional[IndexedContent]:
        with self.session_factory() as session:
            row = session.scalars(select(ContentRecord).where(ContentRecord.link_id == document_id)).first()
            if row is None:
                return None
            return IndexedContent(
                document_id=row.link_id,
                body=row.body,
                content_hash=row.content_hash,
                content_type=row.content_type,
                metadata=dict(row.metadata_json or {}),
                search_text=row.search_text or "",
            )

    def store_content(self, document: SourceDocument, content: IndexedContent,
                      fetched_at: datetime) -> None:
        with self.session_factory.begin() as session:
            link = session.get(LinkRecord, document.id)
            if link is None:
                raise LookupError(f"Unknown documentation link {document.id}")

            row = session.scalars(select(ContentRecord).where(ContentRecord.link_id == document.id)).first()
            if row is None:
                row = ContentRecord(link_id=document.id)
                session.add(row)

            row.content_type = content.content_type
            row.body = content.body
            row.content_hash = content.content_hash
            row.metadata_json = content.metadata
            row.search_text = content.search_text
            row.updated_at = fetched_at

            link.content_hash = content.content_hash
            link.last_fetched = fetched_at

    def touch_fetched(self, document_id: int, fetched_at: datetime) -> None:
        with self._lock:
            self._pending_touches.append((document_id, fetched_at))

    def get_last_fetched(self, document_id: int) -> Optional[datetime]:
        with self.session_factory() as session:
            return session.scalars(select(LinkRecord.last_fetched)
                                   .where(LinkRecord.id == document_id)).first()

    def flush(self) -> None:
        with self._lock:
            pending, self._pending_touches = self._pending_touches, []

        if not pending:
            return

        try:
            with self.session_factory.begin() as session:
                for document_id, fetched_at in pending:
                    session.execute(update(LinkRecord).where(LinkRecord.id == document_id)
                                    .values(last_fetched=fetched_at))
        except Exception:
            with self._lock:
                self._pending_touches[:0] = pending
            raise
        logger.debug(f"Flushed {len(pending)} fetch timestamps")
