"""Documentation indexing pipeline.

Runs each source document through fetch, body extraction, hash comparison
and, only when the content changed, metadata extraction and persistence.
Batches are split into fixed-size sub-batches that are processed in order;
documents inside a sub-batch may run concurrently on a bounded worker pool.
"""

import asyncio
import functools
import logging
import re
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup

from ..config.settings import IndexingConfig
from ..errors import IndexingError
from ..models import ContentKind, IndexedContent, SourceDocument
from ..observability import metrics
from ..storage.base import ContentStore
from .converter import HtmlToMarkdownConverter
from .fetcher import (
    DocumentFetcher,
    EmptyContent,
    FetchedContent,
    FetchError,
    FetchResult,
    content_hash,
    extract_metadata,
    extract_text,
    find_main_content,
    parse_html,
    strip_page_chrome,
)

logger = logging.getLogger(__name__)

SEARCH_LANGUAGE = "english"
WORDS_PER_MINUTE = 200
MAX_KEY_PHRASES = 10

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can",
})

DEFAULT_KEY_PHRASES = (
    "spring boot", "spring framework", "spring data", "spring security",
    "spring cloud", "dependency injection", "autoconfiguration", "rest api",
    "microservices", "spring mvc", "spring webflux", "jpa", "hibernate",
    "reactive", "annotation", "configuration", "bean", "controller",
)

_NON_WORD = re.compile(r"[^a-z0-9\s-]")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_search_representation(text: Optional[str]) -> str:
    """Normalize text for full-text search.

    Lowercases, replaces punctuation other than hyphens with spaces, and
    drops stop words and tokens shorter than three characters.
    """
    if not text or not text.strip():
        return ""

    words = _NON_WORD.sub(" ", text.lower()).split()
    return " ".join(w for w in words if len(w) > 2 and w not in STOP_WORDS)


def classify_content_type(url: Optional[str], title: Optional[str]) -> str:
    """Classify a page as guide, reference, api, tutorial, sample, getting-started or documentation."""
    if url is None and title is None:
        return "unknown"

    combined = f"{(url or '').lower()} {(title or '').lower()}"

    if "/guides/" in combined or "guide" in combined:
        return "guide"
    if "/reference/" in combined or "reference" in combined:
        return "reference"
    if "/api/" in combined or "javadoc" in combined or "api" in combined:
        return "api"
    if "tutorial" in combined:
        return "tutorial"
    if "sample" in combined or "example" in combined:
        return "sample"
    if "getting-started" in combined or "getting started" in combined:
        return "getting-started"
    return "documentation"


def extract_key_phrases(text: Optional[str], vocabulary: Sequence[str] = DEFAULT_KEY_PHRASES,
                        limit: int = MAX_KEY_PHRASES) -> List[str]:
    """Vocabulary phrases that occur in ``text``, in vocabulary order."""
    if not text or not text.strip():
        return []

    lower_text = text.lower()
    return [phrase for phrase in vocabulary if phrase in lower_text][:limit]


class IndexOutcome(str, Enum):
    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class IndexResult:
    """Outcome of indexing one document."""
    document_id: int
    url: Optional[str]
    outcome: IndexOutcome
    message: Optional[str] = None
    content_hash: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (IndexOutcome.INDEXED, IndexOutcome.UNCHANGED)


@dataclass
class BatchStats:
    """Aggregate result of :meth:`DocumentationIndexer.index_batch`.

    ``successful`` counts both re-indexed and unchanged documents.
    """
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    unchanged: int = 0
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def indexed(self) -> int:
        return self.successful - self.unchanged

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "indexed": self.indexed,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
        }


def _describe_failure(result: FetchResult) -> str:
    if isinstance(result, FetchError):
        return f"{result.kind.value}: {result.message}"
    if isinstance(result, EmptyContent) and result.last_error is not None:
        return (f"no content after {result.attempts} attempts "
                f"({result.last_error.kind.value}: {result.last_error.message})")
    return "empty response"


class DocumentationIndexer:
    """Fetches, diffs and stores documentation content."""

    def __init__(self,
                 fetcher: DocumentFetcher,
                 converter: HtmlToMarkdownConverter,
                 store: ContentStore,
                 config: Optional[IndexingConfig] = None,
                 key_phrases: Sequence[str] = DEFAULT_KEY_PHRASES,
                 clock: Callable[[], datetime] = utcnow):
        self.fetcher = fetcher
        self.converter = converter
        self.store = store
        self.config = config or IndexingConfig()
        self.key_phrases = tuple(key_phrases)
        self.clock = clock

    async def _run(self, executor: Optional[Executor], func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, functools.partial(func, *args))

    # Body and metadata

    def _extract_body(self, document: SourceDocument, html: str) -> Tuple[BeautifulSoup, str]:
        soup = parse_html(html, document.url)

        if document.content_kind == ContentKind.MARKDOWN:
            if document.selector:
                body = self.converter.convert_with_selector(html, document.selector)
            else:
                main = find_main_content(strip_page_chrome(soup))
                body = self.converter.convert(str(main) if main is not None else html)
        else:
            body = extract_text(soup)

        return soup, body

    def build_metadata(self, soup: BeautifulSoup, body: str, document: SourceDocument) -> Dict[str, Any]:
        """Page metadata plus derived reading and classification fields."""
        metadata = extract_metadata(soup)

        word_count = len(body.split())
        metadata["word_count"] = word_count
        metadata["reading_time"] = max(1, word_count // WORDS_PER_MINUTE)
        metadata["content_type"] = classify_content_type(
            document.url, metadata.get("title") or document.title)
        metadata["language"] = SEARCH_LANGUAGE

        key_phrases = extract_key_phrases(body, self.key_phrases)
        if key_phrases:
            metadata["key_phrases"] = key_phrases

        metadata["indexed_at"] = self.clock().isoformat()
        return metadata

    def _build_content(self, soup: BeautifulSoup, body: str, document: SourceDocument) -> IndexedContent:
        metadata = self.build_metadata(soup, body, document)
        return IndexedContent.from_body(
            document_id=document.id,
            body=body,
            content_type=document.content_kind.value,
            metadata=metadata,
            search_text=generate_search_representation(body),
        )

    # State machine

    async def _process(self, document: SourceDocument, executor: Optional[Executor],
                       stored_hash: Optional[str] = None, lookup_hash: bool = True) -> IndexResult:
        if not document.active:
            logger.debug(f"Skipping inactive document {document.label()}")
            return self._record(IndexResult(document.id, document.url, IndexOutcome.SKIPPED, "inactive"))

        if not document.url or not document.url.strip():
            logger.warning(f"Cannot index document {document.id} without URL")
            return self._record(IndexResult(document.id, document.url, IndexOutcome.SKIPPED, "missing url"))

        try:
            if lookup_hash:
                stored_hash = await self._run(executor, self.store.get_hash, document.id)

            result = await self.fetcher.fetch_document(document.url)
            if not isinstance(result, FetchedContent):
                message = _describe_failure(result)
                logger.warning(f"Failed to fetch document {document.label()}: {message}")
                return self._record(IndexResult(document.id, document.url, IndexOutcome.FAILED, message))

            soup, body = await self._run(executor, self._extract_body, document, result.html)
            if not body or not body.strip():
                logger.warning(f"No content extracted for document {document.label()}")
                return self._record(IndexResult(document.id, document.url, IndexOutcome.FAILED,
                                                "no content extracted"))

            new_hash = content_hash(body)
            fetched_at = self.clock()

            if stored_hash == new_hash:
                await self._run(executor, self.store.touch_fetched, document.id, fetched_at)
                document.last_fetched = fetched_at
                document.content_hash = new_hash
                logger.debug(f"Content unchanged for document {document.label()}")
                return self._record(IndexResult(document.id, document.url, IndexOutcome.UNCHANGED,
                                                content_hash=new_hash))

            content = await self._run(executor, self._build_content, soup, body, document)
            await self._run(executor, self.store.store_content, document, content, fetched_at)
            document.content_hash = content.content_hash
            document.last_fetched = fetched_at

            logger.info(f"Indexed document {document.label()} - hash {content.content_hash[:12]} - "
                        f"{len(body)} chars")
            return self._record(IndexResult(document.id, document.url, IndexOutcome.INDEXED,
                                            content_hash=content.content_hash))

        except Exception as e:
            logger.error(f"Error indexing document {document.label()}: {e}", exc_info=True)
            metrics.record_indexing_outcome("error")
            raise IndexingError(document.id, document.url, e) from e

    def _record(self, result: IndexResult) -> IndexResult:
        metrics.record_indexing_outcome(result.outcome.value)
        return result

    async def _update(self, document: SourceDocument, executor: Optional[Executor]) -> IndexResult:
        try:
            stored_hash = await self._run(executor, self.store.get_hash, document.id)
        except Exception as e:
            raise IndexingError(document.id, document.url, e) from e

        if stored_hash is None:
            logger.info(f"No existing content for document {document.label()}, performing full index")
        return await self._process(document, executor, stored_hash=stored_hash, lookup_hash=False)

    async def _flush(self, executor: Optional[Executor]) -> None:
        await self._run(executor, self.store.flush)

    # Public API

    async def index_one(self, document: SourceDocument) -> IndexResult:
        """Index a single document.

        Raises:
            IndexingError: On unexpected failure. A fetch that yields no
                content is a ``FAILED`` result, not an exception.
        """
        result = await self._process(document, None)
        await self._flush(None)
        return result

    async def update_index(self, document: SourceDocument) -> IndexResult:
        """Re-index a document only if its content changed.

        Falls back to a full :meth:`index_one` when nothing is stored yet.
        """
        result = await self._update(document, None)
        await self._flush(None)
        return result

    async def _process_sub_batch(self, batch: List[SourceDocument], incremental: bool,
                                 executor: Executor) -> List[Union[IndexResult, BaseException]]:
        step = self._update if incremental else self._process

        if not self.config.parallel or len(batch) < 2:
            results: List[Union[IndexResult, BaseException]] = []
            for document in batch:
                try:
                    results.append(await step(document, executor))
                except Exception as e:
                    results.append(e)
            return results

        semaphore = asyncio.Semaphore(min(self.config.max_workers, len(batch)))

        async def guarded(document: SourceDocument) -> IndexResult:
            async with semaphore:
                return await step(document, executor)

        return await asyncio.gather(*(guarded(d) for d in batch), return_exceptions=True)

    async def _shutdown_executor(self, executor: ThreadPoolExecutor) -> None:
        executor.shutdown(wait=False, cancel_futures=True)
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(executor.shutdown, wait=True)),
                timeout=self.config.termination_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Indexing workers did not terminate within "
                           f"{self.config.termination_timeout_s}s")

    async def index_batch(self, documents: Sequence[SourceDocument], incremental: bool = False) -> BatchStats:
        """Index many documents, one sub-batch at a time.

        A failing document never aborts the batch; it is counted in
        ``failed`` and described in ``errors``. The store is flushed after
        every sub-batch.

        Args:
            documents: Documents to index, processed in list order by sub-batch
            incremental: Use :meth:`update_index` semantics for every document

        Returns:
            Batch statistics
        """
        start_time = time.monotonic()
        stats = BatchStats(total=len(documents))

        if not documents:
            logger.info("No documents to index in batch")
            return stats

        batch_size = self.config.batch_size
        sub_batches = [list(documents[i:i + batch_size]) for i in range(0, len(documents), batch_size)]
        logger.info(f"Starting batch indexing for {len(documents)} documents in {len(sub_batches)} "
                    f"sub-batches (parallel: {self.config.parallel}, incremental: {incremental})")

        executor = ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="docsync-index")
        try:
            for number, batch in enumerate(sub_batches, start=1):
                logger.debug(f"Processing sub-batch {number}/{len(sub_batches)} ({len(batch)} documents)")
                results = await self._process_sub_batch(batch, incremental, executor)

                for document, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        stats.failed += 1
                        cause = result.cause if isinstance(result, IndexingError) else result
                        stats.errors.append(f"Document {document.id} ({document.url}) failed: {cause}")
                    elif result.outcome == IndexOutcome.FAILED:
                        stats.failed += 1
                        stats.errors.append(f"Document {document.id} ({document.url}) failed: {result.message}")
                    elif result.outcome == IndexOutcome.SKIPPED:
                        stats.skipped += 1
                    else:
                        stats.successful += 1
                        if result.outcome == IndexOutcome.UNCHANGED:
                            stats.unchanged += 1

                try:
                    await self._flush(executor)
                except Exception as e:
                    logger.error(f"Flush after sub-batch {number} failed: {e}", exc_info=True)
                    stats.errors.append(f"Flush after sub-batch {number} failed: {e}")
        finally:
            await self._shutdown_executor(executor)

        stats.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Batch indexing completed: {stats.total} total, {stats.successful} successful "
                    f"({stats.unchanged} unchanged), {stats.failed} failed, {stats.skipped} skipped "
                    f"in {stats.duration_ms}ms")
        return stats
