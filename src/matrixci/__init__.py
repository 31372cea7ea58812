from .errors import (
    AllocationError,
    DuplicateResultError,
    IncompleteJobSetError,
    MatrixCIError,
    NotFoundError,
    RunAborted,
    VersionMismatchError,
)
from .matrix import expand
from .model import Completed, Environment, JobStatus, RepositoryIdentity, SandboxFailure, SourceRef
from .scheduler import Scheduler, run_matrix
from .store import StateStore, open_job_set
from .summary import Summary, summarize

__all__ = [
    "AllocationError",
    "Completed",
    "DuplicateResultError",
    "Environment",
    "IncompleteJobSetError",
    "JobStatus",
    "MatrixCIError",
    "NotFoundError",
    "RepositoryIdentity",
    "RunAborted",
    "SandboxFailure",
    "Scheduler",
    "SourceRef",
    "StateStore",
    "Summary",
    "VersionMismatchError",
    "expand",
    "open_job_set",
    "run_matrix",
    "summarize",
]
