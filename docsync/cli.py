"""Command line entry point for docsync."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional, Sequence

from .config.settings import SyncSettings, load_settings
from .errors import ConfigurationError
from .observability import setup_logging_from_config
from .pipelines.converter import HtmlToMarkdownConverter
from .pipelines.fetcher import DocumentFetcher, FetchedContent, extract_text, parse_html
from .pipelines.indexer import DocumentationIndexer
from .server.scheduler import DocumentationSyncScheduler
from .server.state import JobName, JobState
from .services.catalog_sync import GenerationsCatalogSync
from .services.versions import ProjectPageVersionDetector
from .storage.sql import SqlCatalog, SqlContentStore, create_db_engine, init_db, make_session_factory

logger = logging.getLogger(__name__)


def build_scheduler(settings: SyncSettings, fetcher: DocumentFetcher) -> DocumentationSyncScheduler:
    """Wire the SQL stores, indexer and catalog services into a scheduler."""
    engine = create_db_engine(settings.database.url, settings.database.echo)
    init_db(engine)
    session_factory = make_session_factory(engine)

    catalog = SqlCatalog(session_factory)
    indexer = DocumentationIndexer(
        fetcher=fetcher,
        converter=HtmlToMarkdownConverter(),
        store=SqlContentStore(session_factory),
        config=settings.indexing,
    )
    return DocumentationSyncScheduler(
        settings=settings,
        catalog=catalog,
        indexer=indexer,
        version_detector=ProjectPageVersionDetector(fetcher, catalog),
        catalog_sync=GenerationsCatalogSync(fetcher, catalog, settings.catalog.generations_feed_url),
    )


async def serve(settings: SyncSettings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Not available on Windows event loops
            pass

    async with DocumentFetcher(settings.fetch, settings.retry) as fetcher:
        scheduler = build_scheduler(settings, fetcher)
        scheduler.start()
        try:
            await stop.wait()
        finally:
            logger.info("Shutting down")
            await scheduler.shutdown()


async def run_job(settings: SyncSettings, job_name: str) -> int:
    async with DocumentFetcher(settings.fetch, settings.retry) as fetcher:
        scheduler = build_scheduler(settings, fetcher)
        status = await scheduler.trigger(job_name)
        await scheduler.shutdown()

    print(json.dumps(status.to_dict(), indent=2, default=str))
    return 0 if status.state == JobState.SUCCESS else 1


async def fetch_url(settings: SyncSettings, url: str, markdown: bool, selector: Optional[str]) -> int:
    async with DocumentFetcher(settings.fetch, settings.retry) as fetcher:
        result = await fetcher.fetch_document(url)

    if not isinstance(result, FetchedContent):
        print(f"Fetch failed: {result}", file=sys.stderr)
        return 1

    if markdown or selector:
        converter = HtmlToMarkdownConverter()
        if selector:
            print(converter.convert_with_selector(result.html, selector))
        else:
            print(converter.convert(result.html))
    else:
        print(extract_text(parse_html(result.html, result.url)))
    return 0


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docsync", description="Scheduled documentation synchronization")
    parser.add_argument("--config", help="Path to a YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", help="Run the cron scheduler until interrupted")

    run_parser = subparsers.add_parser("run", help="Run one job now and print its status")
    run_parser.add_argument("job", choices=[j.value for j in JobName])

    fetch_parser = subparsers.add_parser("fetch", help="Fetch one URL and print it")
    fetch_parser.add_argument("url")
    fetch_parser.add_argument("--markdown", action="store_true", help="Convert the page to Markdown")
    fetch_parser.add_argument("--selector", help="CSS selector of the region to convert")

    subparsers.add_parser("init-db", help="Create the database schema")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = make_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging_from_config(settings.logging)

    if args.command == "init-db":
        init_db(create_db_engine(settings.database.url, settings.database.echo))
        return 0
    if args.command == "serve":
        try:
            asyncio.run(serve(settings))
        except KeyboardInterrupt:
            pass
        return 0
    if args.command == "run":
        return asyncio.run(run_job(settings, args.job))
    return asyncio.run(fetch_url(settings, args.url, args.markdown, args.selector))


if __name__ == "__main__":
    sys.exit(main())
