# model.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidTransitionError

# Axes that split the matrix, in the fixed order used for expansion and for
# the canonical rendering of an environment.
COMBINATORIC_AXES: Tuple[str, ...] = ("runtime", "env")

FORMAT_VERSION = "1.0"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------

def _axis_sort_key(name: str) -> Tuple[int, str]:
    if name in COMBINATORIC_AXES:
        return COMBINATORIC_AXES.index(name), name
    return len(COMBINATORIC_AXES), name


@dataclass(frozen=True)
class Environment:
    """
    One concrete point of the build matrix: axis name -> scalar value.

    Stored as ordered (axis, value) pairs so two environments compare equal
    iff every axis value matches.
    """
    pairs: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Environment:
        pairs = sorted(mapping.items(), key=lambda kv: _axis_sort_key(kv[0]))
        return cls(pairs=tuple(pairs))

    def __getitem__(self, axis: str) -> Any:
        for k, v in self.pairs:
            if k == axis:
                return v
        raise KeyError(axis)

    def __contains__(self, axis: object) -> bool:
        return any(k == axis for k, _ in self.pairs)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def get(self, axis: str, default: Any = None) -> Any:
        try:
            return self[axis]
        except KeyError:
            return default

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.pairs)

    def describe(self) -> str:
        """Canonical rendering, e.g. "runtime=3.11; env=FOO=1"."""
        return "; ".join(f"{k}={v}" for k, v in self.pairs)

    def __str__(self) -> str:
        return self.describe() or "(default)"


# ---------------------------------------------------------------------
# Job status
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.PASSED, JobStatus.FAILED)


_TRANSITIONS: Dict[JobStatus, Tuple[JobStatus, ...]] = {
    JobStatus.PENDING: (JobStatus.RUNNING,),
    JobStatus.RUNNING: (JobStatus.PASSED, JobStatus.FAILED),
    JobStatus.PASSED: (),
    JobStatus.FAILED: (),
}


# ---------------------------------------------------------------------
# Persisted records (manifest.json / result.json)
# ---------------------------------------------------------------------

class RepositoryIdentity(BaseModel):
    """Where the source came from and which commit was resolved."""
    model_config = ConfigDict(frozen=True)

    url: str
    commit: str = ""            # short hash
    sha: str = ""               # full hash
    author: str = ""
    author_email: str = ""
    committer: str = ""
    committer_email: str = ""
    subject: str = ""

    @property
    def name(self) -> str:
        return self.url.rstrip("/").split("/")[-1].replace(".git", "")


class JobSetManifest(BaseModel):
    file_version: str
    repository: RepositoryIdentity
    created_at: datetime


class JobManifest(BaseModel):
    id: int
    name: str
    environment: Dict[str, Any] = Field(default_factory=dict)
    env_name: str = ""
    created_at: datetime


class JobResult(BaseModel):
    status: JobStatus
    started_at: datetime
    ended_at: datetime

    @field_validator("status")
    @classmethod
    def _must_be_terminal(cls, v: JobStatus) -> JobStatus:
        if not v.terminal:
            raise ValueError(f"result status must be passed|failed, got {v.value}")
        return v

    @property
    def duration(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


# ---------------------------------------------------------------------
# In-memory handles
# ---------------------------------------------------------------------

@dataclass
class JobSetHandle:
    path: Path
    manifest: JobSetManifest


@dataclass
class JobHandle:
    """
    A job as seen by the worker that owns it.

    Status only moves forward: pending -> running -> passed|failed.
    """
    jobset: Path
    ordinal: int
    environment: Environment
    path: Path
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return f"#{self.ordinal}"

    @property
    def log_path(self) -> Path:
        return self.path / "log"

    @property
    def artifacts_path(self) -> Path:
        return self.path / "artifacts"

    def advance(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"job {self.name} cannot move from {self.status.value} to {status.value}",
                path=self.path,
            )
        self.status = status


@dataclass
class JobView:
    """
    Read-only view of a job directory.

    manifest is None when the run stopped between creating the directory and
    writing its manifest; such a job is unfinished.
    """
    path: Path
    manifest: Optional[JobManifest]
    result: Optional[JobResult]

    @property
    def ordinal(self) -> int:
        return int(self.path.name)

    @property
    def name(self) -> str:
        return f"#{self.ordinal}"

    @property
    def finished(self) -> bool:
        return self.manifest is not None and self.result is not None

    @property
    def status(self) -> JobStatus:
        return self.result.status if self.result is not None else JobStatus.PENDING

    @property
    def environment(self) -> Environment:
        if self.manifest is None:
            return Environment()
        return Environment.from_mapping(self.manifest.environment)

    def read_log(self) -> bytes:
        p = self.path / "log"
        return p.read_bytes() if p.exists() else b""


@dataclass
class JobSetView:
    path: Path
    manifest: JobSetManifest
    jobs: List[JobView]
    sealed: bool

    @property
    def complete(self) -> bool:
        return all(j.finished for j in self.jobs)


# ---------------------------------------------------------------------
# Sandbox contract
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Completed:
    """The sandboxed process ran to termination."""
    exit_status: int


@dataclass(frozen=True)
class SandboxFailure:
    """The sandbox itself failed, or the hard timeout elapsed."""
    reason: str


ExecutionOutcome = Union[Completed, SandboxFailure]


def outcome_passed(outcome: ExecutionOutcome) -> bool:
    return isinstance(outcome, Completed) and outcome.exit_status == 0


@dataclass(frozen=True)
class SourceRef:
    """
    An already-fetched checkout plus the build script to run against it.
    """
    checkout: Path
    repository: RepositoryIdentity
    script: Tuple[str, ...] = ()
    before_script: Tuple[str, ...] = ()

    @property
    def commands(self) -> List[str]:
        return [*self.before_script, *self.script]
