# summary.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .errors import IncompleteJobSetError
from .model import JobSetView, JobStatus, RepositoryIdentity


class JobSummary(BaseModel):
    ordinal: int
    name: str
    environment: Dict[str, Any]
    env_name: str
    status: JobStatus
    started_at: datetime
    ended_at: datetime
    duration: float


class Summary(BaseModel):
    """What a report or notification needs to know about a finished run."""
    jobset: str
    repository: RepositoryIdentity
    passed: bool
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: float = 0.0
    jobs: List[JobSummary]

    @property
    def state(self) -> str:
        return "Passed" if self.passed else "Failed"

    @property
    def duration_words(self) -> str:
        return duration_in_words(self.duration)

    @property
    def failed_jobs(self) -> List[JobSummary]:
        return [j for j in self.jobs if j.status is not JobStatus.PASSED]


def duration_in_words(seconds: float) -> str:
    """1 hour 2 min 3 sec, dropping leading zero units."""
    total = int(abs(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)

    words = []
    if hours > 0:
        words.append(f"{hours} {'hours' if hours > 1 else 'hour'}")
    if minutes > 0:
        words.append(f"{minutes} min")
    words.append(f"{secs} sec")
    return " ".join(words)


def summarize(view: JobSetView) -> Summary:
    """
    Compute the verdict for a sealed job set.

    passed is True iff every job passed. Start/end are the earliest job start
    and the latest job end.

    Raises:
        IncompleteJobSetError: the set is not sealed, or a job has no result
    """
    if not view.sealed:
        raise IncompleteJobSetError("Job set is not sealed yet", path=view.path)

    jobs: List[JobSummary] = []
    for job in view.jobs:
        if not job.finished:
            raise IncompleteJobSetError(
                f"Job {job.name} has no result",
                path=job.path,
            )
        jobs.append(
            JobSummary(
                ordinal=job.ordinal,
                name=job.name,
                environment=dict(job.manifest.environment),
                env_name=job.manifest.env_name,
                status=job.result.status,
                started_at=job.result.started_at,
                ended_at=job.result.ended_at,
                duration=job.result.duration,
            )
        )

    started_at = min((j.started_at for j in jobs), default=None)
    ended_at = max((j.ended_at for j in jobs), default=None)
    duration = (ended_at - started_at).total_seconds() if started_at and ended_at else 0.0

    return Summary(
        jobset=str(view.path),
        repository=view.manifest.repository,
        passed=all(j.status is JobStatus.PASSED for j in jobs),
        started_at=started_at,
        ended_at=ended_at,
        duration=duration,
        jobs=jobs,
    )
