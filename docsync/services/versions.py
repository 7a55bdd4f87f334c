"""Project version parsing, active-version policies and version detection."""

import asyncio
import logging
import re
from datetime import date, datetime
from typing import Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from bs4 import Tag

from ..models import Project, ProjectVersion, VersionState
from ..pipelines.fetcher import DocumentFetcher, FetchedContent, parse_html
from ..storage.base import VersionCatalog

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(
    r"^(\d+)\.(\d+)(?:\.(\d+|x))?(?:[-.]?(RC|SNAPSHOT|M|RELEASE)(?:\d+)?)?$",
    re.IGNORECASE,
)

VERSION_ELEMENT_SELECTORS = ".version-selector option, .release-version, [data-version]"

PROJECT_PAGE_BASE_URL = "https://spring.io/projects/"

DATE_FORMATS = ("%Y-%m-%d", "%b %d, %Y", "%B %d, %Y")

_SUFFIX_STATES = {
    "RC": VersionState.RC,
    "SNAPSHOT": VersionState.SNAPSHOT,
    "M": VersionState.MILESTONE,
    "RELEASE": VersionState.GA,
}


def version_state(suffix: Optional[str]) -> VersionState:
    if not suffix:
        return VersionState.GA
    return _SUFFIX_STATES.get(suffix.upper(), VersionState.GA)


def parse_version(text: Optional[str], project_id: int = 0) -> Optional[ProjectVersion]:
    """Parse ``major.minor[.patch|.x][-RC1|-M2|-SNAPSHOT|.RELEASE]``.

    Returns:
        An unsaved ``ProjectVersion``, or None when ``text`` is not a version
    """
    if not text or not text.strip():
        return None

    match = VERSION_PATTERN.match(text.strip())
    if not match:
        logger.debug(f"Version string does not match expected pattern: {text}")
        return None

    major, minor, patch, suffix = match.groups()
    return ProjectVersion(
        project_id=project_id,
        version=text.strip(),
        major=int(major),
        minor=int(minor),
        patch=int(patch) if patch and patch.lower() != "x" else None,
        state=version_state(suffix),
    )


def sort_key(version: ProjectVersion) -> Tuple[int, int, int]:
    return version.major, version.minor, version.patch or 0


def is_newer_than(version: ProjectVersion, other: ProjectVersion) -> bool:
    return sort_key(version) > sort_key(other)


def find_latest_stable(versions: Iterable[ProjectVersion]) -> Optional[ProjectVersion]:
    """Highest GA version, or None if there is none."""
    stable = [v for v in versions if v.state == VersionState.GA]
    return max(stable, key=sort_key) if stable else None


class ActiveVersionPolicy(Protocol):
    """Chooses which of a project's versions get their documentation synced."""

    def select(self, versions: Sequence[ProjectVersion]) -> List[ProjectVersion]: ...


class AllActiveVersionsPolicy:
    """Every version not marked inactive."""

    def select(self, versions: Sequence[ProjectVersion]) -> List[ProjectVersion]:
        return [v for v in versions if v.active]


class RecentMinorVersionsPolicy:
    """Latest GA, the two previous GA minors of its major, and up to three newer pre-releases.

    For each previous minor the highest patch is chosen.
    """

    def __init__(self, previous_minors: int = 2, max_prereleases: int = 3):
        self.previous_minors = previous_minors
        self.max_prereleases = max_prereleases

    def select(self, versions: Sequence[ProjectVersion]) -> List[ProjectVersion]:
        candidates = [v for v in versions if v.active]
        latest = find_latest_stable(candidates)
        if latest is None:
            logger.warning("No stable version found, nothing selected")
            return []

        selected = [latest]

        seen_minors: Set[int] = set()
        previous = sorted(
            (v for v in candidates
             if v.state == VersionState.GA and v.major == latest.major and v.minor < latest.minor),
            key=sort_key, reverse=True,
        )
        for v in previous:
            if v.minor in seen_minors:
                continue
            seen_minors.add(v.minor)
            selected.append(v)
            if len(seen_minors) == self.previous_minors:
                break

        prereleases = sorted(
            (v for v in candidates if v.state != VersionState.GA and is_newer_than(v, latest)),
            key=sort_key, reverse=True,
        )
        selected.extend(prereleases[:self.max_prereleases])
        return selected


def policy_from_name(name: str) -> ActiveVersionPolicy:
    if name == "recent-minors":
        return RecentMinorVersionsPolicy()
    return AllActiveVersionsPolicy()


def parse_release_date(text: Optional[str]) -> Optional[date]:
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text.strip(), fmt).date()
        except ValueError:
            continue
    logger.debug(f"Could not parse date: {text}")
    return None


def extract_version_text(element: Tag) -> Optional[str]:
    text = element.get("value") or element.get("data-version") or element.get_text(" ")
    text = text.strip()
    text = re.sub(r"^Version\s+", "", text)
    text = re.sub(r"^Current:\s+", "", text)
    text = re.sub(r"^v", "", text)
    text = re.sub(r"\s+.*$", "", text)
    return text or None


class ProjectPageVersionDetector:
    """Detects published versions from a project's overview page."""

    def __init__(self, fetcher: DocumentFetcher, catalog: VersionCatalog,
                 base_url: str = PROJECT_PAGE_BASE_URL):
        self.fetcher = fetcher
        self.catalog = catalog
        self.base_url = base_url

    def project_url(self, project: Project) -> str:
        return project.homepage_url or f"{self.base_url}{project.slug}"

    def parse_versions(self, html: str, project_id: int) -> List[ProjectVersion]:
        """Version candidates found in the page, first occurrence wins."""
        soup = parse_html(html)
        versions: List[ProjectVersion] = []
        seen: Set[str] = set()

        for element in soup.select(VERSION_ELEMENT_SELECTORS):
            text = extract_version_text(element)
            if not text or text in seen:
                continue
            seen.add(text)

            version = parse_version(text, project_id)
            if version is None:
                continue
            version.release_date = parse_release_date(element.get("data-release-date"))
            versions.append(version)

        return versions

    async def detect(self, project: Project) -> List[ProjectVersion]:
        """Fetch the project page and return the versions it lists."""
        url = self.project_url(project)
        logger.debug(f"Fetching project page: {url}")

        result = await self.fetcher.fetch_document(url)
        if not isinstance(result, FetchedContent):
            logger.warning(f"Could not fetch project page for {project.slug}: {result}")
            return []

        versions = self.parse_versions(result.html, project.id)
        logger.info(f"Detected {len(versions)} versions for project: {project.slug}")
        return versions

    def refresh_latest_flag(self, project: Project) -> Optional[ProjectVersion]:
        latest = find_latest_stable(self.catalog.list_versions(project.id))
        if latest is not None:
            self.catalog.set_latest_version(project.id, latest.id)
            logger.debug(f"Latest stable version of {project.slug} is {latest.version}")
        return latest

    def store_new_versions(self, project: Project,
                           detected: List[ProjectVersion]) -> List[ProjectVersion]:
        existing = {v.version for v in self.catalog.list_versions(project.id)}

        new_versions = [self.catalog.upsert_version(v) for v in detected if v.version not in existing]
        if new_versions:
            logger.info(f"Added {len(new_versions)} new versions for project: {project.slug}")
        else:
            logger.debug(f"No new versions found for project: {project.slug}")

        self.refresh_latest_flag(project)
        return new_versions

    async def update_versions(self, project: Project) -> List[ProjectVersion]:
        """Add detected versions the catalog does not know yet.

        Catalog writes run on the default executor.

        Returns:
            The newly stored versions
        """
        detected = await self.detect(project)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.store_new_versions, project, detected)
