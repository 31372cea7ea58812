# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


class MatrixCIError(Exception):
    """
    Base class for every orchestration error.

    Carries enough context for clean CLI output without a traceback:
      - kind: short machine-friendly name
      - path: the job set / job directory involved (if any)
      - details: extra key=value lines
    """
    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        self.details = dict(details or {})

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.path is not None:
            lines.append(f"path={self.path}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class AllocationError(MatrixCIError):
    """A job or job set path could not be created or written."""
    kind = "allocation_error"


class DuplicateResultError(MatrixCIError):
    """A result was recorded twice for the same job (scheduler bug)."""
    kind = "duplicate_result"


class IncompleteJobSetError(MatrixCIError):
    """Seal or summarize attempted while some job has no result. Retry later."""
    kind = "incomplete_jobset"


class VersionMismatchError(MatrixCIError):
    """The on-disk format version is not one we understand."""
    kind = "version_mismatch"


class NotFoundError(MatrixCIError):
    kind = "not_found"


class InvalidTransitionError(MatrixCIError):
    """A job status tried to move backwards or leave a terminal state."""
    kind = "invalid_transition"


class DefinitionError(MatrixCIError):
    """The build matrix definition could not be read or is malformed."""
    kind = "definition_error"


@dataclass
class RunAborted(Exception):
    """
    A fault in the orchestration fabric stopped the whole run.

    The partially populated job set is left on disk (unsealed) so the
    operator can inspect it.
    """
    phase: str
    jobset: Path | None
    cause: BaseException
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"run aborted during {self.phase}: {self.cause}"]
        if self.jobset is not None:
            lines.append(f"jobset={self.jobset}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)
