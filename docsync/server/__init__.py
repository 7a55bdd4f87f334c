"""Job orchestration for docsync: scheduler and in-memory job state."""

from .scheduler import DocumentationSyncScheduler
from .state import JobGuard, JobName, JobRun, JobState, JobStatus, OrchestrationState

__all__ = [
    'DocumentationSyncScheduler',
    'JobGuard',
    'JobName',
    'JobRun',
    'JobState',
    'JobStatus',
    'OrchestrationState',
]
