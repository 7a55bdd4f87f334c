"""Tests for the documentation indexer."""

import asyncio
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from docsync.config.settings import IndexingConfig
from docsync.errors import IndexingError
from docsync.models import ContentKind, IndexedContent, compute_hash
from docsync.pipelines.fetcher import FetchedContent
from docsync.pipelines.converter import HtmlToMarkdownConverter
from docsync.pipelines.indexer import (
    BatchStats,
    DocumentationIndexer,
    IndexOutcome,
    classify_content_type,
    extract_key_phrases,
    generate_search_representation,
)

from conftest import make_document, page


def _content(document_id, body):
    return IndexedContent.from_body(document_id, body, "html")


class TestHelpers:
    """Search representation, classification and key phrases"""

    def test_search_representation(self):
        text = "The Spring Boot starter, and its auto-configuration!"

        assert generate_search_representation(text) == "spring boot starter its auto-configuration"
        assert generate_search_representation("   ") == ""
        assert generate_search_representation(None) == ""

    @pytest.mark.parametrize("url,title,expected", [
        ("https://docs.spring.io/guides/rest", None, "guide"),
        ("https://docs.spring.io/x/reference/index.html", None, "reference"),
        ("https://docs.spring.io/x/api/Foo.html", None, "api"),
        ("https://docs.spring.io/x", "A Tutorial", "tutorial"),
        ("https://docs.spring.io/samples", None, "sample"),
        ("https://docs.spring.io/x", "Getting Started", "getting-started"),
        ("https://docs.spring.io/x", "Overview", "documentation"),
        (None, None, "unknown"),
    ])
    def test_classify_content_type(self, url, title, expected):
        assert classify_content_type(url, title) == expected

    def test_key_phrases_in_vocabulary_order(self):
        text = "Use a Controller with Spring Boot and dependency injection."

        assert extract_key_phrases(text) == ["spring boot", "dependency injection", "controller"]
        assert extract_key_phrases(text, limit=1) == ["spring boot"]
        assert extract_key_phrases("") == []


class TestIndexOne:
    """Single document state machine"""

    @pytest.mark.asyncio
    async def test_new_document_is_indexed(self, indexer, session, store, fixed_now):
        document = make_document(1, "spring-boot/guide.html")
        session.respond(document.url, page("<p>Spring Boot guide body text.</p>"))

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.INDEXED
        stored = store.get_content(1)
        assert "Spring Boot guide body text." in stored.body
        assert stored.content_hash == compute_hash(stored.body)
        assert stored.metadata["content_type"] == "guide"
        assert stored.metadata["language"] == "english"
        assert stored.metadata["reading_time"] == 1
        assert stored.metadata["key_phrases"] == ["spring boot"]
        assert stored.metadata["indexed_at"] == fixed_now.isoformat()
        assert document.content_hash == stored.content_hash
        assert document.last_fetched == fixed_now
        assert store.get_last_fetched(1) == fixed_now

    @pytest.mark.asyncio
    async def test_unchanged_content_only_touches_fetch_time(self, indexer, session, store, fixed_now):
        document = make_document(1)
        session.respond(document.url, page("<p>Stable body</p>"))
        await indexer.index_one(document)
        first = store.get_content(1)

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.UNCHANGED
        assert store.store_count == 1
        assert store.touch_count == 1
        assert store.get_content(1) is first
        assert store.pending_touches == 0

    @pytest.mark.asyncio
    async def test_changed_content_is_replaced(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, page("<p>Old body</p>"), page("<p>New body</p>"))
        await indexer.index_one(document)
        old_hash = store.get_hash(1)

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.INDEXED
        assert store.get_hash(1) != old_hash
        assert "New body" in store.get_content(1).body
        assert store.store_count == 2

    @pytest.mark.asyncio
    async def test_inactive_or_urlless_documents_are_skipped(self, indexer, session, store):
        inactive = make_document(1, active=False)
        no_url = make_document(2)
        no_url.url = "  "

        assert (await indexer.index_one(inactive)).outcome == IndexOutcome.SKIPPED
        assert (await indexer.index_one(no_url)).outcome == IndexOutcome.SKIPPED
        assert session.requests == []
        assert store.store_count == 0

    @pytest.mark.asyncio
    async def test_fetch_failure_is_a_failed_result(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, 404)

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.FAILED
        assert "404" in result.message
        assert store.store_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [503, ""])
    async def test_failed_refetch_leaves_stored_content_untouched(self, indexer, session, store,
                                                                   fixed_now, failure):
        document = make_document(1)
        session.respond(document.url, page("<p>Indexed once</p>"), failure)
        await indexer.index_one(document)
        stored = store.get_content(1)
        stored_hash = store.get_hash(1)
        indexer.clock = lambda: fixed_now + timedelta(days=1)

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.FAILED
        assert store.get_content(1) is stored
        assert store.get_hash(1) == stored_hash
        assert store.get_last_fetched(1) == fixed_now
        assert document.last_fetched == fixed_now
        assert store.store_count == 1
        assert store.touch_count == 0

    @pytest.mark.asyncio
    async def test_blank_extracted_body_is_a_failed_result(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, "<html><body><script>x()</script></body></html>")

        result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.FAILED
        assert result.message == "no content extracted"
        assert store.store_count == 0

    @pytest.mark.asyncio
    async def test_store_failure_raises_indexing_error(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, page("<p>Body</p>"))

        with patch.object(store, "store_content", side_effect=RuntimeError("disk full")):
            with pytest.raises(IndexingError) as exc_info:
                await indexer.index_one(document)

        assert exc_info.value.document_id == 1
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_markdown_documents_use_selector(self, fetcher, store, session):
        converter = HtmlToMarkdownConverter()
        indexer = DocumentationIndexer(fetcher, converter, store)
        document = make_document(1, kind=ContentKind.MARKDOWN, selector=".markdown")
        session.respond(document.url, page('<div class="markdown"><p>Selected</p></div>'))

        with patch.object(converter, "convert_with_selector", return_value="# Selected") as convert:
            result = await indexer.index_one(document)

        assert result.outcome == IndexOutcome.INDEXED
        convert.assert_called_once()
        assert convert.call_args[0][1] == ".markdown"
        assert store.get_content(1).body == "# Selected"
        assert store.get_content(1).content_type == "markdown"


class TestUpdateIndex:
    """Incremental updates"""

    @pytest.mark.asyncio
    async def test_falls_back_to_full_index(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, page("<p>First</p>"))

        result = await indexer.update_index(document)

        assert result.outcome == IndexOutcome.INDEXED
        assert store.get_hash(1) is not None

    @pytest.mark.asyncio
    async def test_unchanged_document(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, page("<p>Same</p>"))
        await indexer.update_index(document)

        result = await indexer.update_index(document)

        assert result.outcome == IndexOutcome.UNCHANGED
        assert store.store_count == 1


class TestIndexBatch:
    """Batch processing"""

    @pytest.mark.asyncio
    async def test_empty_batch(self, indexer, session):
        stats = await indexer.index_batch([])

        assert stats == BatchStats()
        assert session.requests == []

    @pytest.mark.asyncio
    async def test_one_timeout_does_not_abort_batch(self, indexer, session, sleep):
        documents = [make_document(i) for i in (1, 2, 3)]
        session.respond(documents[0].url, page("<p>One</p>"))
        session.respond(documents[1].url, asyncio.TimeoutError())
        session.respond(documents[2].url, page("<p>Three</p>"))

        stats = await indexer.index_batch(documents)

        assert stats.total == 3
        assert stats.successful == 2
        assert stats.failed == 1
        assert len(stats.errors) == 1
        assert stats.errors[0].startswith(f"Document 2 ({documents[1].url}) failed:")
        assert "timeout" in stats.errors[0]

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded_and_workers_are_stopped(self, indexer):
        documents = [make_document(i) for i in range(1, 7)]
        in_flight = 0
        peak = 0
        saturated = asyncio.Event()

        async def fetch_document(url):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            if in_flight == indexer.config.max_workers:
                saturated.set()
            await asyncio.wait_for(saturated.wait(), timeout=5)
            for _ in range(3):
                await asyncio.sleep(0)
            in_flight -= 1
            return FetchedContent(url=url, html=page(f"<p>Body for {url}</p>"))

        with patch.object(indexer.fetcher, "fetch_document", side_effect=fetch_document):
            stats = await indexer.index_batch(documents)

        assert stats.successful == 6
        assert peak == indexer.config.max_workers
        assert not [t for t in threading.enumerate() if t.name.startswith("docsync-index")]

    @pytest.mark.asyncio
    async def test_counts_unchanged_and_skipped(self, indexer, session):
        documents = [make_document(1), make_document(2), make_document(3, active=False)]
        for document in documents:
            session.respond(document.url, page(f"<p>Body {document.id}</p>"))
        await indexer.index_batch(documents[:1])

        stats = await indexer.index_batch(documents)

        assert stats.successful == 2
        assert stats.unchanged == 1
        assert stats.indexed == 1
        assert stats.skipped == 1
        assert stats.failed == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_counted(self, indexer, session, store):
        documents = [make_document(1), make_document(2)]
        for document in documents:
            session.respond(document.url, page(f"<p>Body {document.id}</p>"))

        original = store.store_content

        def failing_store(document, content, fetched_at):
            if document.id == 1:
                raise RuntimeError("constraint violated")
            original(document, content, fetched_at)

        with patch.object(store, "store_content", side_effect=failing_store):
            stats = await indexer.index_batch(documents)

        assert stats.successful == 1
        assert stats.failed == 1
        assert stats.errors == [f"Document 1 ({documents[0].url}) failed: constraint violated"]

    @pytest.mark.asyncio
    async def test_sub_batches_flush_in_order(self, fetcher, store, session):
        indexer = DocumentationIndexer(fetcher, HtmlToMarkdownConverter(), store,
                                       IndexingConfig(batch_size=2, parallel=False))
        documents = [make_document(i) for i in range(1, 6)]
        for document in documents:
            session.respond(document.url, page(f"<p>Body {document.id}</p>"))

        stats = await indexer.index_batch(documents)

        assert stats.successful == 5
        assert store.flush_count == 3
        assert session.requests == [d.url for d in documents]

    @pytest.mark.asyncio
    async def test_incremental_batch(self, indexer, session, store):
        documents = [make_document(1), make_document(2)]
        session.respond(documents[0].url, page("<p>A</p>"))
        session.respond(documents[1].url, page("<p>B</p>"), page("<p>B changed</p>"))
        await indexer.index_batch(documents)

        stats = await indexer.index_batch(documents, incremental=True)

        assert stats.unchanged == 1
        assert stats.indexed == 1
        assert "B changed" in store.get_content(2).body

    @pytest.mark.asyncio
    async def test_flush_failure_is_reported(self, indexer, session, store):
        document = make_document(1)
        session.respond(document.url, page("<p>A</p>"))

        with patch.object(store, "flush", side_effect=RuntimeError("db down")):
            stats = await indexer.index_batch([document])

        assert stats.successful == 1
        assert any("db down" in e for e in stats.errors)
