"""Tests for version parsing, policies and project page detection."""

import threading
from datetime import date
from unittest.mock import patch

import pytest

from docsync.models import ProjectVersion, VersionState
from docsync.pipelines.fetcher import FetchError, FetchErrorKind, FetchedContent
from docsync.services.versions import (
    AllActiveVersionsPolicy,
    ProjectPageVersionDetector,
    RecentMinorVersionsPolicy,
    find_latest_stable,
    is_newer_than,
    parse_release_date,
    parse_version,
    policy_from_name,
)

from conftest import add_project, add_version

PROJECT_PAGE = """
<html><body>
  <select class="version-selector">
    <option value="3.3.0-RC1">3.3.0-RC1</option>
    <option value="3.2.5">3.2.5</option>
    <option value="3.2.5">3.2.5 duplicate</option>
    <option value="latest">latest</option>
  </select>
  <span class="release-version" data-release-date="2024-04-18">Version 3.1.11 (GA)</span>
  <div data-version="3.0.x"></div>
</body></html>
"""


class TestParseVersion:
    """Version string parsing"""

    @pytest.mark.parametrize("text,major,minor,patch,state", [
        ("3.2.5", 3, 2, 5, VersionState.GA),
        ("3.2", 3, 2, None, VersionState.GA),
        ("3.2.x", 3, 2, None, VersionState.GA),
        ("3.3.0-RC1", 3, 3, 0, VersionState.RC),
        ("3.3.0-M2", 3, 3, 0, VersionState.MILESTONE),
        ("3.3.0-SNAPSHOT", 3, 3, 0, VersionState.SNAPSHOT),
        ("2.7.18.RELEASE", 2, 7, 18, VersionState.GA),
    ])
    def test_valid_versions(self, text, major, minor, patch, state):
        version = parse_version(text, project_id=5)

        assert (version.major, version.minor, version.patch, version.state) == (major, minor, patch, state)
        assert version.project_id == 5
        assert version.version == text

    @pytest.mark.parametrize("text", [None, "", "latest", "v3", "3.2.5 beta"])
    def test_invalid_versions(self, text):
        assert parse_version(text) is None

    def test_ordering(self):
        assert is_newer_than(parse_version("3.2.10"), parse_version("3.2.9"))
        assert not is_newer_than(parse_version("3.2"), parse_version("3.2.0"))

    def test_find_latest_stable_ignores_prereleases(self):
        versions = [parse_version(v) for v in ("3.1.0", "3.2.1", "3.3.0-RC1")]

        assert find_latest_stable(versions).version == "3.2.1"
        assert find_latest_stable([parse_version("4.0.0-M1")]) is None

    def test_release_dates(self):
        assert parse_release_date("2024-04-18") == date(2024, 4, 18)
        assert parse_release_date("Apr 18, 2024") == date(2024, 4, 18)
        assert parse_release_date("soon") is None


def _versions(*texts, inactive=()):
    result = []
    for number, text in enumerate(texts, start=1):
        version = parse_version(text, project_id=1)
        version.id = number
        version.active = text not in inactive
        result.append(version)
    return result


class TestPolicies:
    """Active version selection"""

    def test_all_active(self):
        versions = _versions("3.1.0", "3.2.0", inactive=("3.1.0",))

        assert [v.version for v in AllActiveVersionsPolicy().select(versions)] == ["3.2.0"]

    def test_recent_minors(self):
        versions = _versions("3.3.0", "3.2.0", "3.2.4", "3.1.9", "3.0.2", "2.7.18",
                             "3.4.0-M1", "3.3.1-SNAPSHOT", "3.2.5-RC1")

        selected = [v.version for v in RecentMinorVersionsPolicy().select(versions)]

        assert selected == ["3.3.0", "3.2.4", "3.1.9", "3.4.0-M1", "3.3.1-SNAPSHOT"]

    def test_recent_minors_without_stable(self):
        assert RecentMinorVersionsPolicy().select(_versions("4.0.0-M1")) == []

    def test_policy_from_name(self):
        assert isinstance(policy_from_name("recent-minors"), RecentMinorVersionsPolicy)
        assert isinstance(policy_from_name("all"), AllActiveVersionsPolicy)


class StubFetcher:
    def __init__(self, result):
        self.result = result
        self.urls = []

    async def fetch_document(self, url):
        self.urls.append(url)
        return self.result


class TestProjectPageDetection:
    """Version detection from a project's overview page"""

    def test_parse_versions(self, catalog):
        detector = ProjectPageVersionDetector(StubFetcher(None), catalog)

        versions = detector.parse_versions(PROJECT_PAGE, project_id=1)

        assert [v.version for v in versions] == ["3.3.0-RC1", "3.2.5", "3.1.11", "3.0.x"]
        assert versions[2].release_date == date(2024, 4, 18)

    @pytest.mark.asyncio
    async def test_update_versions_adds_only_new(self, catalog):
        project = add_project(catalog)
        add_version(catalog, project, "3.2.5", 3, 2, 5)
        fetcher = StubFetcher(FetchedContent(url="u", html=PROJECT_PAGE))
        detector = ProjectPageVersionDetector(fetcher, catalog)

        new_versions = await detector.update_versions(project)

        assert sorted(v.version for v in new_versions) == ["3.0.x", "3.1.11", "3.3.0-RC1"]
        assert fetcher.urls == ["https://spring.io/projects/spring-boot"]
        latest = [v for v in catalog.list_versions(project.id) if v.is_latest]
        assert [v.version for v in latest] == ["3.2.5"]

    @pytest.mark.asyncio
    async def test_fetch_failure_detects_nothing(self, catalog):
        project = add_project(catalog)
        fetcher = StubFetcher(FetchError("u", FetchErrorKind.HTTP_STATUS, "HTTP 503", 503, 3))
        detector = ProjectPageVersionDetector(fetcher, catalog)

        assert await detector.update_versions(project) == []
        assert catalog.list_versions(project.id) == []

    @pytest.mark.asyncio
    async def test_catalog_writes_run_off_the_event_loop(self, catalog):
        project = add_project(catalog)
        detector = ProjectPageVersionDetector(StubFetcher(FetchedContent(url="u", html=PROJECT_PAGE)), catalog)
        loop_thread = threading.get_ident()
        threads = []
        upsert = catalog.upsert_version

        def recording_upsert(version):
            threads.append(threading.get_ident())
            return upsert(version)

        with patch.object(catalog, "upsert_version", side_effect=recording_upsert):
            await detector.update_versions(project)

        assert len(threads) == 4
        assert loop_thread not in threads

    def test_homepage_url_is_preferred(self, catalog):
        detector = ProjectPageVersionDetector(StubFetcher(None), catalog)
        project = add_project(catalog)
        project.homepage_url = "https://spring.io/projects/spring-boot#learn"

        assert detector.project_url(project) == "https://spring.io/projects/spring-boot#learn"


def test_version_dataclass_stability_flag():
    assert ProjectVersion(project_id=1, version="1.0.0", major=1, minor=0).is_stable
