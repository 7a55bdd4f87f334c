"""Comprehensive catalog sync from the upstream generations feed.

The feed lists projects and their release generations with support
windows::

    {"projects": [
        {"slug": "spring-boot", "name": "Spring Boot",
         "generations": [
            {"name": "3.2.x", "initialRelease": "2023-11",
             "ossSupportEnd": "2024-11", "enterpriseSupportEnd": "2026-02"}]}]}

Month-precision dates are read as the first day of that month.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import DocSyncError
from ..models import Project, ProjectVersion
from ..pipelines.fetcher import DocumentFetcher, FetchedContent
from ..storage.base import VersionCatalog
from .versions import PROJECT_PAGE_BASE_URL, find_latest_stable, parse_version

logger = logging.getLogger(__name__)


def parse_feed_date(value: Any) -> Optional[date]:
    """Parse ``YYYY-MM`` (first of the month) or ``YYYY-MM-DD``."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date: {value!r}")


class Generation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    initial_release: Optional[date] = Field(default=None, alias="initialRelease")
    oss_support_end: Optional[date] = Field(default=None, alias="ossSupportEnd")
    enterprise_support_end: Optional[date] = Field(default=None, alias="enterpriseSupportEnd")

    @field_validator("initial_release", "oss_support_end", "enterprise_support_end", mode="before")
    @classmethod
    def _month_dates(cls, value: Any) -> Optional[date]:
        return parse_feed_date(value)


class FeedProject(BaseModel):
    slug: str
    name: Optional[str] = None
    generations: List[Generation] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or " ".join(part.capitalize() for part in self.slug.split("-"))


class GenerationsFeed(BaseModel):
    projects: List[FeedProject] = Field(default_factory=list)


@dataclass
class CatalogSyncResult:
    projects_created: int = 0
    versions_created: int = 0
    versions_updated: int = 0
    errors: int = 0
    success: bool = False
    error_message: Optional[str] = None

    def summary(self) -> str:
        return (f"projects created: {self.projects_created}, versions created: {self.versions_created}, "
                f"versions updated: {self.versions_updated}, errors: {self.errors}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects_created": self.projects_created,
            "versions_created": self.versions_created,
            "versions_updated": self.versions_updated,
            "errors": self.errors,
            "success": self.success,
            "error_message": self.error_message,
        }


class GenerationsCatalogSync:
    """Reconciles the project/version catalog with the generations feed."""

    def __init__(self, fetcher: DocumentFetcher, catalog: VersionCatalog, feed_url: str,
                 project_base_url: str = PROJECT_PAGE_BASE_URL):
        self.fetcher = fetcher
        self.catalog = catalog
        self.feed_url = feed_url
        self.project_base_url = project_base_url

    async def fetch_feed(self) -> GenerationsFeed:
        result = await self.fetcher.fetch(self.feed_url)
        if not isinstance(result, FetchedContent):
            raise DocSyncError(f"Could not fetch generations feed {self.feed_url}: {result}")
        try:
            return GenerationsFeed.model_validate_json(result.html)
        except ValidationError as e:
            raise DocSyncError(f"Invalid generations feed from {self.feed_url}: {e}") from e

    def _ensure_project(self, entry: FeedProject, result: CatalogSyncResult) -> Project:
        project = self.catalog.get_project(entry.slug)
        if project is not None:
            return project

        logger.info(f"Creating project: {entry.display_name} ({entry.slug})")
        result.projects_created += 1
        return self.catalog.upsert_project(Project(
            slug=entry.slug,
            name=entry.display_name,
            homepage_url=f"{self.project_base_url}{entry.slug}",
        ))

    def _sync_generation(self, project: Project, generation: Generation,
                         existing: Dict[str, ProjectVersion], result: CatalogSyncResult) -> None:
        dates = {
            "release_date": generation.initial_release,
            "oss_support_end": generation.oss_support_end,
            "enterprise_support_end": generation.enterprise_support_end,
        }

        current = existing.get(generation.name)
        if current is None:
            parsed = parse_version(generation.name, project.id)
            if parsed is None:
                raise ValueError(f"Unparseable generation {generation.name!r}")
            self.catalog.upsert_version(replace(parsed, **dates))
            result.versions_created += 1
            logger.debug(f"Created version {generation.name} for {project.slug}")
            return

        if any(getattr(current, key) != value for key, value in dates.items()):
            self.catalog.upsert_version(replace(current, **dates))
            result.versions_updated += 1
            logger.debug(f"Updated support dates of {project.slug} {generation.name}")

    def sync_feed(self, feed: GenerationsFeed) -> CatalogSyncResult:
        """Apply ``feed`` to the catalog; per-entry failures are counted, not raised."""
        result = CatalogSyncResult()

        for entry in feed.projects:
            try:
                project = self._ensure_project(entry, result)
            except Exception as e:
                logger.error(f"Error creating project {entry.slug}: {e}", exc_info=True)
                result.errors += 1
                continue

            existing = {v.version: v for v in self.catalog.list_versions(project.id)}
            for generation in entry.generations:
                try:
                    self._sync_generation(project, generation, existing, result)
                except Exception as e:
                    logger.error(f"Error processing {entry.slug} {generation.name}: {e}")
                    result.errors += 1

            latest = find_latest_stable(self.catalog.list_versions(project.id))
            if latest is not None:
                self.catalog.set_latest_version(project.id, latest.id)

        result.success = True
        logger.info(f"Catalog sync completed: {result.summary()}")
        return result

    async def run(self) -> CatalogSyncResult:
        """Fetch the feed and apply it. Feed failures produce an unsuccessful result."""
        try:
            feed = await self.fetch_feed()
        except DocSyncError as e:
            logger.error(str(e))
            return CatalogSyncResult(success=False, error_message=str(e))
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.sync_feed, feed)
