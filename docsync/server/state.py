"""In-memory orchestration state: per-job status, mutual-exclusion guards and totals.

Owned by one :class:`~docsync.server.scheduler.DocumentationSyncScheduler`
instance. Callers only ever receive copies of a :class:`JobStatus`.
"""

import copy
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional


class JobName(str, Enum):
    """Named scheduled jobs."""
    COMPREHENSIVE_SYNC = "comprehensive_sync"
    DOCUMENTATION_SYNC = "documentation_sync"
    VERSION_DETECTION = "version_detection"
    CONTENT_REFRESH = "content_refresh"
    EOL_CLEANUP = "eol_cleanup"


class JobState(str, Enum):
    """Job state enumeration."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobStatus:
    """Status of the latest execution of a named job."""
    job_name: str
    state: JobState = JobState.IDLE
    last_run_time: Optional[datetime] = None
    last_completed_time: Optional[datetime] = None
    next_run_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    items_processed: int = 0
    errors_encountered: int = 0
    last_error_message: Optional[str] = None
    skipped_runs: int = 0
    last_skipped_time: Optional[datetime] = None
    statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state == JobState.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["state"] = self.state.value
        for key in ("last_run_time", "last_completed_time", "next_run_time", "last_skipped_time"):
            if data[key]:
                data[key] = data[key].isoformat()
        return data


@dataclass
class JobRun:
    """Counters a job body fills in while it executes."""
    items_processed: int = 0
    errors: int = 0
    statistics: Dict[str, Any] = field(default_factory=dict)


class JobGuard:
    """Non-blocking test-and-set flag for one job name."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.locked()


class OrchestrationState:
    """Job statuses, guards and global statistics for one scheduler."""

    def __init__(self, job_names: Iterable[str] = tuple(j.value for j in JobName),
                 clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._lock = threading.Lock()
        self._statuses: Dict[str, JobStatus] = {}
        self._guards: Dict[str, JobGuard] = {}
        for name in map(self._key, job_names):
            self._statuses[name] = JobStatus(job_name=name)
            self._guards[name] = JobGuard(name)

        self.total_documents_processed = 0
        self.total_versions_detected = 0
        self.total_errors = 0

    @staticmethod
    def _key(name) -> str:
        return name.value if isinstance(name, JobName) else name

    def _status(self, name) -> JobStatus:
        try:
            return self._statuses[self._key(name)]
        except KeyError:
            raise KeyError(f"Unknown job: {name}") from None

    @property
    def job_names(self) -> List[str]:
        return list(self._statuses)

    def guard(self, name) -> JobGuard:
        return self._guards[self._key(name)]

    def status(self, name) -> JobStatus:
        with self._lock:
            return copy.deepcopy(self._status(name))

    def all_statuses(self) -> Dict[str, JobStatus]:
        with self._lock:
            return {name: copy.deepcopy(s) for name, s in self._statuses.items()}

    def is_any_job_running(self) -> bool:
        with self._lock:
            return any(s.state == JobState.RUNNING for s in self._statuses.values())

    # Transitions

    def try_claim(self, name) -> bool:
        """Claim the job's guard; False when an execution already holds it."""
        return self.guard(name).try_acquire()

    def release(self, name) -> None:
        self.guard(name).release()

    def record_skip(self, name) -> JobStatus:
        """Note a rejected concurrent attempt and return a SKIPPED snapshot.

        The shared status keeps the state of the execution holding the guard.
        """
        now = self.clock()
        with self._lock:
            status = self._status(name)
            status.skipped_runs += 1
            status.last_skipped_time = now
            snapshot = copy.deepcopy(status)
        snapshot.state = JobState.SKIPPED
        return snapshot

    def mark_running(self, name) -> JobStatus:
        now = self.clock()
        with self._lock:
            status = self._status(name)
            status.state = JobState.RUNNING
            status.last_run_time = now
            status.duration_ms = None
            status.items_processed = 0
            status.errors_encountered = 0
            status.last_error_message = None
            status.statistics = {}
            return copy.deepcopy(status)

    def mark_finished(self, name, run: JobRun, duration_ms: int,
                      error: Optional[str] = None) -> JobStatus:
        """Record SUCCESS, or FAILED when ``error`` is given."""
        now = self.clock()
        with self._lock:
            status = self._status(name)
            status.state = JobState.FAILED if error is not None else JobState.SUCCESS
            status.last_completed_time = now
            status.duration_ms = duration_ms
            status.items_processed = run.items_processed
            status.errors_encountered = run.errors + (1 if error is not None else 0)
            status.last_error_message = error
            status.statistics = dict(run.statistics)
            return copy.deepcopy(status)

    def set_next_run_time(self, name, next_run_time: Optional[datetime]) -> None:
        with self._lock:
            self._status(name).next_run_time = next_run_time

    def add_totals(self, documents: int = 0, versions: int = 0, errors: int = 0) -> None:
        with self._lock:
            self.total_documents_processed += documents
            self.total_versions_detected += versions
            self.total_errors += errors

    def global_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_documents_processed": self.total_documents_processed,
                "total_versions_detected": self.total_versions_detected,
                "total_errors": self.total_errors,
                "any_job_running": any(s.state == JobState.RUNNING for s in self._statuses.values()),
            }
