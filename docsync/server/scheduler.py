"""Documentation synchronization scheduler.

Drives the catalog sync, documentation sync, version detection, content
refresh and end-of-life cleanup jobs on cron triggers (APScheduler) and on
manual request. Every execution goes through the same path: enable check,
guard claim, RUNNING, body, SUCCESS/FAILED, guard release. Exceptions from
job bodies never leave the scheduler.
"""

import asyncio
import functools
import logging
import time
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config.settings import SyncSettings
from ..errors import DocSyncError
from ..models import Project, ProjectVersion, SourceDocument
from ..observability import metrics
from ..pipelines.indexer import BatchStats, DocumentationIndexer
from ..services.catalog_sync import GenerationsCatalogSync
from ..services.versions import ActiveVersionPolicy, ProjectPageVersionDetector, policy_from_name
from ..storage.base import VersionCatalog
from .state import JobName, JobRun, JobStatus, OrchestrationState

logger = logging.getLogger(__name__)

JobBody = Callable[[JobRun], Awaitable[None]]


def _merge_batch_stats(run: JobRun, stats: BatchStats) -> None:
    totals = run.statistics
    for key in ("total", "successful", "failed", "skipped", "unchanged", "indexed"):
        totals[key] = totals.get(key, 0) + getattr(stats, key)
    totals.setdefault("errors", []).extend(stats.errors)
    run.items_processed += stats.successful
    run.errors += stats.failed


class DocumentationSyncScheduler:
    """Schedules and runs the documentation synchronization jobs."""

    def __init__(self,
                 settings: SyncSettings,
                 catalog: VersionCatalog,
                 indexer: DocumentationIndexer,
                 version_detector: Optional[ProjectPageVersionDetector] = None,
                 catalog_sync: Optional[GenerationsCatalogSync] = None,
                 version_policy: Optional[ActiveVersionPolicy] = None,
                 state: Optional[OrchestrationState] = None,
                 today: Callable[[], date] = date.today):
        self.settings = settings
        self.config = settings.scheduler
        self.catalog = catalog
        self.indexer = indexer
        self.version_detector = version_detector
        self.catalog_sync = catalog_sync
        self.version_policy = version_policy or policy_from_name(self.config.version_policy)
        self.state = state or OrchestrationState()
        self.today = today
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._background_tasks: Set[asyncio.Task] = set()

        self._bodies: Dict[JobName, JobBody] = {
            JobName.COMPREHENSIVE_SYNC: self._comprehensive_sync,
            JobName.DOCUMENTATION_SYNC: self._documentation_sync,
            JobName.VERSION_DETECTION: self._version_detection,
            JobName.CONTENT_REFRESH: self._content_refresh,
            JobName.EOL_CLEANUP: self._eol_cleanup,
        }

    async def _call(self, func, *args):
        """Run a blocking catalog call off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    # Lifecycle

    def start(self) -> None:
        """Register cron jobs for every enabled job and start the scheduler.

        Must be called with a running event loop.
        """
        if not self.config.enabled:
            logger.info("Documentation sync scheduler is disabled")
            return

        self.scheduler = AsyncIOScheduler(
            timezone=self.config.timezone,
            job_defaults={'coalesce': True, 'max_instances': 3, 'misfire_grace_time': 300},
        )
        self.scheduler.add_listener(self._job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        for job_name in JobName:
            job_config = self.config.job(job_name.value)
            if not job_config.enabled:
                logger.info(f"Job {job_name.value} is disabled, not scheduling it")
                continue

            self.scheduler.add_job(
                self.trigger,
                CronTrigger.from_crontab(job_config.cron, timezone=self.config.timezone),
                args=[job_name],
                id=job_name.value,
                name=job_name.value,
                replace_existing=True,
            )
            logger.info(f"Scheduled {job_name.value} with cron: {job_config.cron}")

        self.scheduler.start()
        for job in self.scheduler.get_jobs():
            self.state.set_next_run_time(job.id, job.next_run_time)
        logger.info("Documentation sync scheduler started")

    async def shutdown(self) -> None:
        """Stop scheduling and wait for background indexing tasks."""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

        if self._background_tasks:
            logger.info(f"Waiting for {len(self._background_tasks)} background indexing tasks")
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
        logger.info("Documentation sync scheduler shut down")

    def _job_event(self, event: JobExecutionEvent) -> None:
        if event.exception is not None:
            logger.error(f"Scheduled job {event.job_id} raised: {event.exception}")
        if self.scheduler is None:
            return
        job = self.scheduler.get_job(event.job_id)
        self.state.set_next_run_time(event.job_id, job.next_run_time if job else None)

    # Execution

    def _is_enabled(self, job_name: JobName) -> bool:
        return self.config.enabled and self.config.job(job_name.value).enabled

    async def _execute(self, job_name: JobName, body: JobBody) -> JobStatus:
        if not self._is_enabled(job_name):
            logger.debug(f"Job {job_name.value} is disabled, not running it")
            return self.state.status(job_name)

        if not self.state.try_claim(job_name):
            logger.warning(f"Job {job_name.value} is already running, skipping this execution")
            metrics.job_runs.labels(job=job_name.value, state="skipped").inc()
            return self.state.record_skip(job_name)

        start_time = time.monotonic()
        run = JobRun()
        error: Optional[str] = None
        status: Optional[JobStatus] = None
        try:
            self.state.mark_running(job_name)
            metrics.job_running.labels(job=job_name.value).set(1)
            logger.info(f"Starting job {job_name.value}")
            try:
                await body(run)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(f"Job {job_name.value} failed: {error}", exc_info=True)

            duration_ms = int((time.monotonic() - start_time) * 1000)
            status = self.state.mark_finished(job_name, run, duration_ms, error)
        finally:
            if status is None:
                # Cancelled or interrupted before a final state was recorded
                self.state.mark_finished(job_name, run, int((time.monotonic() - start_time) * 1000),
                                         error or "Job interrupted")
            metrics.job_running.labels(job=job_name.value).set(0)
            self.state.release(job_name)

        self.state.add_totals(errors=status.errors_encountered)
        metrics.record_job_run(job_name.value, status.state.value, duration_ms / 1000.0)
        if error is None:
            logger.info(f"Job {job_name.value} completed in {duration_ms}ms: "
                        f"{run.items_processed} items, {run.errors} errors")
        return status

    async def trigger(self, job_name: Union[str, JobName]) -> JobStatus:
        """Run a job now, subject to the same enable flags and guards as scheduled runs.

        Raises:
            ValueError: If ``job_name`` is not a known job
        """
        job_name = JobName(job_name)
        return await self._execute(job_name, self._bodies[job_name])

    async def run_comprehensive_sync(self) -> JobStatus:
        return await self.trigger(JobName.COMPREHENSIVE_SYNC)

    async def run_documentation_sync(self) -> JobStatus:
        return await self.trigger(JobName.DOCUMENTATION_SYNC)

    async def run_version_detection(self) -> JobStatus:
        return await self.trigger(JobName.VERSION_DETECTION)

    async def run_content_refresh(self) -> JobStatus:
        return await self.trigger(JobName.CONTENT_REFRESH)

    async def run_eol_cleanup(self) -> JobStatus:
        return await self.trigger(JobName.EOL_CLEANUP)

    # Job bodies

    async def _comprehensive_sync(self, run: JobRun) -> None:
        if self.catalog_sync is None:
            raise DocSyncError("No catalog sync configured")

        result = await self.catalog_sync.run()
        run.statistics.update(result.to_dict())
        run.items_processed = result.versions_created + result.versions_updated
        run.errors = result.errors
        self.state.add_totals(versions=result.versions_created)

        if not result.success:
            raise DocSyncError(result.error_message or "Catalog sync failed")

    async def _links_for_versions(self, versions: List[ProjectVersion]) -> List[SourceDocument]:
        documents: List[SourceDocument] = []
        for version in versions:
            documents.extend(await self._call(self.catalog.list_active_links, version.id))
        return documents

    async def _documentation_sync(self, run: JobRun) -> None:
        projects: List[Project] = await self._call(self.catalog.list_active_projects)
        run.statistics["projects"] = len(projects)
        run.statistics["versions"] = 0
        run.statistics.setdefault("errors", [])

        for project in projects:
            try:
                versions = self.version_policy.select(
                    await self._call(self.catalog.list_active_versions, project.id))
                documents = await self._links_for_versions(versions)
            except Exception as e:
                logger.error(f"Could not collect documents for project {project.slug}: {e}", exc_info=True)
                run.errors += 1
                run.statistics["errors"].append(f"Project {project.slug} failed: {e}")
                continue

            run.statistics["versions"] += len(versions)
            logger.info(f"Syncing {len(documents)} documents of {len(versions)} versions "
                        f"for project {project.slug}")
            stats = await self.indexer.index_batch(documents)
            _merge_batch_stats(run, stats)
            self.state.add_totals(documents=stats.successful)

    async def _index_new_versions(self, project: Project, versions: List[ProjectVersion]) -> None:
        try:
            documents = await self._links_for_versions(versions)
            stats = await self.indexer.index_batch(documents)
            self.state.add_totals(documents=stats.successful, errors=stats.failed)
            logger.info(f"Indexed new versions of {project.slug}: {stats.successful} documents, "
                        f"{stats.failed} failed")
        except Exception as e:
            self.state.add_totals(errors=1)
            logger.error(f"Indexing new versions of {project.slug} failed: {e}", exc_info=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _version_detection(self, run: JobRun) -> None:
        if not self.config.auto_detect_versions:
            run.statistics["auto_detect"] = False
            logger.info("Automatic version detection is disabled")
            return
        if self.version_detector is None:
            raise DocSyncError("No version detector configured")

        projects: List[Project] = await self._call(self.catalog.list_active_projects)
        new_total = 0
        spawned = 0

        for project in projects:
            try:
                new_versions = await self.version_detector.update_versions(project)
            except Exception as e:
                logger.error(f"Version detection failed for {project.slug}: {e}", exc_info=True)
                run.errors += 1
                continue

            if new_versions:
                new_total += len(new_versions)
                logger.info(f"Detected {len(new_versions)} new versions for {project.slug}: "
                            f"{', '.join(v.version for v in new_versions)}")
                self._spawn(self._index_new_versions(project, new_versions))
                spawned += 1

        run.items_processed = new_total
        run.statistics.update({
            "projects_checked": len(projects),
            "new_versions": new_total,
            "indexing_tasks": spawned,
        })
        self.state.add_totals(versions=new_total)

    async def _content_refresh(self, run: JobRun) -> None:
        pages = iter(self.catalog.iter_active_links(self.config.refresh_batch_size))
        batches = 0
        run.statistics.setdefault("errors", [])

        while True:
            page = await self._call(next, pages, None)
            if page is None:
                break
            batches += 1
            stats = await self.indexer.index_batch(page, incremental=True)
            _merge_batch_stats(run, stats)
            self.state.add_totals(documents=stats.successful)

        run.statistics["batches"] = batches
        run.statistics["updated"] = run.statistics.get("indexed", 0)

    async def _eol_cleanup(self, run: JobRun) -> None:
        today = self.today()
        expired = await self._call(self.catalog.list_versions_past_support, today)
        versions_cleaned = 0
        run.statistics["errors"] = []

        for version in expired:
            if version.is_latest:
                continue
            deactivated = 0
            try:
                links = await self._call(self.catalog.list_active_links, version.id)
                for link in links:
                    await self._call(self.catalog.deactivate_link, link.id)
                    deactivated += 1
            except Exception as e:
                logger.error(f"Cleanup of version {version.version} failed: {e}", exc_info=True)
                run.errors += 1
                run.statistics["errors"].append(f"Version {version.version} failed: {e}")
            else:
                if links:
                    versions_cleaned += 1
                    logger.info(f"Deactivated {len(links)} links of version {version.version} "
                                f"(enterprise support ended {version.enterprise_support_end})")
            run.items_processed += deactivated

        run.statistics.update({
            "expired_versions": len([v for v in expired if not v.is_latest]),
            "versions_cleaned": versions_cleaned,
            "links_deactivated": run.items_processed,
            "as_of": today.isoformat(),
        })

    # Observability

    def get_job_status(self, job_name: Union[str, JobName]) -> JobStatus:
        return self.state.status(JobName(job_name))

    def get_all_job_statuses(self) -> Dict[str, JobStatus]:
        return self.state.all_statuses()

    def get_global_statistics(self) -> Dict[str, object]:
        return self.state.global_statistics()

    def is_any_job_running(self) -> bool:
        return self.state.is_any_job_running()
