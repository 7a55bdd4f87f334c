"""SQLAlchemy schema for projects, versions, documentation links and contents."""
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from ..models import ContentKind, Project, ProjectVersion, SourceDocument, VersionState

Base = declarative_base()


class ProjectRecord(Base):
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True)
    slug = Column(String(200), nullable=False, unique=True)
    name = Column(String(500), nullable=False)
    homepage_url = Column(String(2048), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    versions = relationship("VersionRecord", back_populates="project", cascade="all, delete-orphan")

    def to_model(self) -> Project:
        return Project(slug=self.slug, name=self.name, id=self.id, active=self.active,
                       homepage_url=self.homepage_url)


class VersionRecord(Base):
    __tablename__ = 'project_versions'

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    version = Column(String(100), nullable=False)
    major = Column(Integer, nullable=False)
    minor = Column(Integer, nullable=False)
    patch = Column(Integer, nullable=True)
    state = Column(String(20), nullable=False, default=VersionState.GA.value)
    active = Column(Boolean, nullable=False, default=True)
    is_latest = Column(Boolean, nullable=False, default=False)
    release_date = Column(Date, nullable=True)
    oss_support_end = Column(Date, nullable=True)
    enterprise_support_end = Column(Date, nullable=True)
    reference_doc_url = Column(String(2048), nullable=True)
    api_doc_url = Column(String(2048), nullable=True)

    project = relationship("ProjectRecord", back_populates="versions")
    links = relationship("LinkRecord", back_populates="version")

    __table_args__ = (
        UniqueConstraint('project_id', 'version', name='uq_project_versions_project_version'),
        Index('idx_project_versions_enterprise_end', 'enterprise_support_end'),
    )

    def to_model(self) -> ProjectVersion:
        return ProjectVersion(
            project_id=self.project_id,
            version=self.version,
            major=self.major,
            minor=self.minor,
            patch=self.patch,
            state=VersionState(self.state),
            id=self.id,
            active=self.active,
            is_latest=self.is_latest,
            release_date=self.release_date,
            oss_support_end=self.oss_support_end,
            enterprise_support_end=self.enterprise_support_end,
            reference_doc_url=self.reference_doc_url,
            api_doc_url=self.api_doc_url,
        )

    def update_from(self, version: ProjectVersion) -> None:
        self.major = version.major
        self.minor = version.minor
        self.patch = version.patch
        self.state = version.state.value
        self.active = version.active
        self.is_latest = version.is_latest
        self.release_date = version.release_date
        self.oss_support_end = version.oss_support_end
        self.enterprise_support_end = version.enterprise_support_end
        self.reference_doc_url = version.reference_doc_url
        self.api_doc_url = version.api_doc_url


class LinkRecord(Base):
    __tablename__ = 'documentation_links'

    id = Column(Integer, primary_key=True)
    version_id = Column(Integer, ForeignKey('project_versions.id'), nullable=True)
    url = Column(String(2048), nullable=True)
    title = Column(String(500), nullable=True)
    content_kind = Column(String(20), nullable=False, default=ContentKind.HTML.value)
    selector = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    content_hash = Column(String(64), nullable=True)
    last_fetched = Column(DateTime(timezone=True), nullable=True)

    version = relationship("VersionRecord", back_populates="links")
    content = relationship("ContentRecord", back_populates="link", uselist=False,
                           cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_documentation_links_version', 'version_id'),
        Index('idx_documentation_links_active', 'active'),
    )

    def to_model(self) -> SourceDocument:
        return SourceDocument(
            id=self.id,
            url=self.url,
            version_id=self.version_id,
            title=self.title,
            content_kind=ContentKind(self.content_kind),
            active=self.active,
            selector=self.selector,
            content_hash=self.content_hash,
            last_fetched=self.last_fetched,
        )


class ContentRecord(Base):
    __tablename__ = 'documentation_contents'

    id = Column(Integer, primary_key=True)
    link_id = Column(Integer, ForeignKey('documentation_links.id'), nullable=False, unique=True)
    content_type = Column(String(20), nullable=False)
    body = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    metadata_json = Column('metadata', JSON, nullable=True)
    search_text = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    link = relationship("LinkRecord", back_populates="content")

    __table_args__ = (
        Index('idx_documentation_contents_hash', 'content_hash'),
    )
