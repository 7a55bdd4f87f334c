"""Shared fixtures: a scripted aiohttp-like session and in-memory stores."""

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Dict, List, Union

import pytest

from docsync.config.settings import FetchConfig, IndexingConfig, RetryConfig
from docsync.models import ContentKind, Project, ProjectVersion, SourceDocument
from docsync.pipelines.converter import HtmlToMarkdownConverter
from docsync.pipelines.fetcher import DocumentFetcher
from docsync.pipelines.indexer import DocumentationIndexer
from docsync.storage.memory import InMemoryCatalog, InMemoryContentStore

BASE_URL = "https://docs.spring.io"


def page(body: str, title: str = "Guide") -> str:
    return (f"<html><head><title>{title}</title>"
            f"<meta name='description' content='{title} page'></head>"
            f"<body><nav>Menu</nav><main>{body}</main><footer>Footer</footer></body></html>")


class FakeResponse:
    def __init__(self, url: str, status: int = 200, body: str = ""):
        self.url = url
        self.status = status
        self._body = body

    async def text(self, errors: str = "strict") -> str:
        return self._body


class _RequestContext:
    def __init__(self, outcome: Union[FakeResponse, BaseException]):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Replays scripted responses per URL, in order; the last one repeats."""

    def __init__(self):
        self.scripts: Dict[str, deque] = defaultdict(deque)
        self.requests: List[str] = []
        self.closed = False

    def respond(self, url: str, *outcomes) -> "FakeSession":
        for outcome in outcomes:
            if isinstance(outcome, int):
                outcome = FakeResponse(url, status=outcome)
            elif isinstance(outcome, str):
                outcome = FakeResponse(url, body=outcome)
            self.scripts[url].append(outcome)
        return self

    def get(self, url: str, **kwargs) -> _RequestContext:
        self.requests.append(url)
        script = self.scripts.get(url)
        if not script:
            return _RequestContext(FakeResponse(url, status=404))
        outcome = script.popleft() if len(script) > 1 else script[0]
        return _RequestContext(outcome)

    def calls(self, url: str) -> int:
        return self.requests.count(url)

    async def close(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fetch_config():
    return FetchConfig(allowed_domains=["docs.spring.io", "spring.io"], rendered_url_patterns=[])


@pytest.fixture
def retry_config():
    return RetryConfig(max_attempts=3, delay_ms=100, multiplier=2.0)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def fetcher(fetch_config, retry_config, session, sleep):
    return DocumentFetcher(fetch_config, retry_config, session=session, sleep=sleep)


@pytest.fixture
def store():
    return InMemoryContentStore()


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def indexer(fetcher, store, fixed_now):
    return DocumentationIndexer(
        fetcher=fetcher,
        converter=HtmlToMarkdownConverter(),
        store=store,
        config=IndexingConfig(batch_size=10, parallel=True, max_workers=2, termination_timeout_s=5),
        clock=lambda: fixed_now,
    )


def make_document(doc_id: int, path: str = None, version_id: int = None,
                  kind: ContentKind = ContentKind.HTML, **kwargs) -> SourceDocument:
    return SourceDocument(
        id=doc_id,
        url=f"{BASE_URL}/{path or f'doc-{doc_id}'}",
        version_id=version_id,
        content_kind=kind,
        **kwargs,
    )


def add_project(catalog: InMemoryCatalog, slug: str = "spring-boot") -> Project:
    return catalog.upsert_project(Project(slug=slug, name=slug.replace("-", " ").title()))


def add_version(catalog: InMemoryCatalog, project: Project, version: str, major: int, minor: int,
                patch: int = 0, **kwargs) -> ProjectVersion:
    return catalog.upsert_version(ProjectVersion(
        project_id=project.id, version=version, major=major, minor=minor, patch=patch, **kwargs))
