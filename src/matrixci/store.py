# store.py
from __future__ import annotations

import json
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from .errors import (
    AllocationError,
    DuplicateResultError,
    IncompleteJobSetError,
    MatrixCIError,
    NotFoundError,
    VersionMismatchError,
)
from .model import (
    FORMAT_VERSION,
    Environment,
    JobHandle,
    JobManifest,
    JobResult,
    JobSetHandle,
    JobSetManifest,
    JobSetView,
    JobStatus,
    JobView,
    RepositoryIdentity,
    now_utc,
)
from .ui.console import Console, get_console

# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------
#   <root>/<timestamp>.jobset/
#     manifest.json          format_version, repository, created_at
#     sealed                 present iff sealed
#     <ordinal>/
#       manifest.json        id, environment, created_at
#       result.json          status, started_at, ended_at (absent = unfinished)
#       log                  raw execution log
#       artifacts/           whatever the sandbox left behind
#
# The presence of result.json / sealed is the state machine. Both are
# published in one step (rename or hard link) so a reader never sees half a
# record.
# ---------------------------------------------------------------------

MANIFEST = "manifest.json"
RESULT = "result.json"
SEALED = "sealed"
LOG = "log"
ARTIFACTS = "artifacts"
JOBSET_SUFFIX = ".jobset"
JOBSET_NAME_ATTEMPTS = 5


def _tmp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")


def _write_atomic(path: Path, data: bytes) -> None:
    """Write to a temp file next to `path`, then rename over it."""
    tmp = _tmp_sibling(path)
    try:
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    finally:
        tmp.unlink(missing_ok=True)


def _write_exclusive(path: Path, data: bytes) -> None:
    """
    Publish `data` at `path` only if nothing is there yet.

    Raises FileExistsError if `path` already exists.
    """
    tmp = _tmp_sibling(path)
    try:
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.link(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def _dump(model: BaseModel) -> bytes:
    return model.model_dump_json(indent=2).encode("utf-8")


class StateStore:
    """
    File-based job set store.

    One StateStore per output directory. Write methods are called by the
    scheduler (add_job / record_result from worker threads, each on its own
    job directory); create/seal are called by the orchestrating thread only.
    """

    def __init__(self, root: str | Path, *, console: Console | None = None):
        self.root = Path(root).resolve()
        self.console = console or get_console()

    # ------------------------------------------------------------------
    # write path
    # ------------------------------------------------------------------

    def _jobset_name(self, created_at: datetime, attempt: int = 0) -> str:
        stamp = created_at.strftime("%Y-%m-%dT%H-%M-%S")
        if attempt:
            # same second as an existing set
            stamp = f"{stamp}-{uuid.uuid4().hex[:8]}"
        return stamp + JOBSET_SUFFIX

    def _allocate_dir(self, name: str | None, created_at: datetime) -> Path:
        """
        mkdir the job set directory.

        An explicit `name` must be free. A generated name gets a random
        suffix and is retried when another run took it first.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AllocationError(f"Cannot create job set: {e}", path=self.root) from e

        attempts = 1 if name else JOBSET_NAME_ATTEMPTS
        for attempt in range(attempts):
            path = self.root / (name or self._jobset_name(created_at, attempt))
            try:
                path.mkdir()
                return path
            except FileExistsError:
                continue
            except OSError as e:
                raise AllocationError(f"Cannot create job set: {e}", path=path) from e
        raise AllocationError("Job set already exists", path=path)

    def create_job_set(
        self,
        repository: RepositoryIdentity,
        *,
        name: str | None = None,
    ) -> JobSetHandle:
        """
        Allocate a new, empty, unsealed job set.

        Raises:
            AllocationError: an explicit `name` already exists, or the
              directory cannot be written
        """
        created_at = now_utc()
        manifest = JobSetManifest(
            file_version=FORMAT_VERSION,
            repository=repository,
            created_at=created_at,
        )
        path = self._allocate_dir(name, created_at)

        try:
            _write_atomic(path / MANIFEST, _dump(manifest))
        except OSError as e:
            raise AllocationError(f"Cannot write job set manifest: {e}", path=path) from e

        self.console.print_debug(f"created jobset {path}")
        return JobSetHandle(path=path, manifest=manifest)

    def add_job(self, handle: JobSetHandle, environment: Environment, ordinal: int) -> JobHandle:
        """
        Materialize one job directory (pending) under the set.

        Raises:
            AllocationError: name collision or I/O failure
        """
        if ordinal < 1:
            raise AllocationError(f"Job ordinal must be >= 1, got {ordinal}", path=handle.path)

        path = handle.path / str(ordinal)
        created_at = now_utc()
        manifest = JobManifest(
            id=ordinal,
            name=f"#{ordinal}",
            environment=environment.as_dict(),
            env_name=environment.describe(),
            created_at=created_at,
        )
        try:
            path.mkdir()
        except FileExistsError as e:
            raise AllocationError(f"Job #{ordinal} already exists", path=path) from e
        except OSError as e:
            raise AllocationError(f"Cannot create job #{ordinal}: {e}", path=path) from e

        try:
            _write_atomic(path / MANIFEST, _dump(manifest))
        except OSError as e:
            raise AllocationError(f"Cannot write manifest for job #{ordinal}: {e}", path=path) from e

        return JobHandle(
            jobset=handle.path,
            ordinal=ordinal,
            environment=environment,
            path=path,
            created_at=created_at,
        )

    def staging_dir(self, job: JobHandle) -> Path:
        """Scratch artifact directory the sandbox writes into before the result is recorded."""
        d = job.path / f".{ARTIFACTS}.partial"
        try:
            d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AllocationError(f"Cannot create artifact dir for job {job.name}: {e}", path=job.path) from e
        return d

    def record_result(
        self,
        job: JobHandle,
        status: JobStatus,
        started_at: datetime,
        ended_at: datetime,
        log: bytes,
        artifacts: Path | None = None,
    ) -> JobResult:
        """
        Write the log, move artifacts into place, then publish result.json.

        Exactly once per job: a second call raises DuplicateResultError and
        leaves the first result, log and artifacts untouched.
        """
        result_path = job.path / RESULT
        if result_path.exists():
            raise DuplicateResultError(f"Result already recorded for job {job.name}", path=job.path)

        try:
            result = JobResult(status=status, started_at=started_at, ended_at=ended_at)
        except ValidationError as e:
            raise AllocationError(f"Invalid result for job {job.name}: {e}", path=job.path) from e

        try:
            _write_atomic(job.path / LOG, log)
            if artifacts is not None and Path(artifacts).exists():
                dest = job.path / ARTIFACTS
                if dest.exists():
                    shutil.rmtree(dest)
                shutil.move(str(artifacts), str(dest))
            else:
                (job.path / ARTIFACTS).mkdir(exist_ok=True)
            _write_exclusive(result_path, _dump(result))
        except FileExistsError as e:
            raise DuplicateResultError(f"Result already recorded for job {job.name}", path=job.path) from e
        except OSError as e:
            raise AllocationError(f"Cannot record result for job {job.name}: {e}", path=job.path) from e

        job.started_at = started_at
        job.ended_at = ended_at
        return result

    def seal_job_set(self, handle: JobSetHandle) -> None:
        """
        Mark the set as finalized.

        Raises:
            IncompleteJobSetError: some job has no result record yet
        """
        pending = [
            p.name
            for p in self._job_dirs(handle.path)
            if not ((p / MANIFEST).exists() and (p / RESULT).exists())
        ]
        if pending:
            raise IncompleteJobSetError(
                "Cannot seal job set with unfinished jobs",
                path=handle.path,
                details={"unfinished": ", ".join(pending)},
            )
        try:
            _write_atomic(handle.path / SEALED, now_utc().isoformat().encode("utf-8"))
        except OSError as e:
            raise AllocationError(f"Cannot seal job set: {e}", path=handle.path) from e
        self.console.print_debug(f"sealed jobset {handle.path}")

    # ------------------------------------------------------------------
    # read path
    # ------------------------------------------------------------------

    @staticmethod
    def _job_dirs(path: Path) -> List[Path]:
        dirs = [p for p in path.iterdir() if p.is_dir() and p.name.isdigit()]
        return sorted(dirs, key=lambda p: int(p.name))

    def open_job_set(self, path: str | Path, *, require_complete: bool = False) -> JobSetView:
        """
        Read a job set from disk.

        Raises:
            NotFoundError: no manifest at `path`
            VersionMismatchError: manifest format version is not FORMAT_VERSION
            IncompleteJobSetError: require_complete and some job has no result
        """
        return open_job_set(path, require_complete=require_complete)

    def handle_for(self, view: JobSetView) -> JobSetHandle:
        return JobSetHandle(path=view.path, manifest=view.manifest)


def _read_file_version(manifest_path: Path) -> Optional[str]:
    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise MatrixCIError(f"Unreadable job set manifest: {e}", path=manifest_path) from e
    if not isinstance(raw, dict):
        return None
    return raw.get("file_version")


def open_job_set(path: str | Path, *, require_complete: bool = False) -> JobSetView:
    root = Path(path).resolve()
    manifest_path = root / MANIFEST
    if not manifest_path.is_file():
        raise NotFoundError("Job set manifest not found", path=root)

    # check the version before validating the rest of the schema
    version = _read_file_version(manifest_path)
    if version != FORMAT_VERSION:
        raise VersionMismatchError(
            f"Job set format version {version!r} is unsupported",
            path=root,
            details={"expected": FORMAT_VERSION},
        )

    try:
        manifest = JobSetManifest.model_validate_json(manifest_path.read_bytes())
    except ValidationError as e:
        raise MatrixCIError(f"Invalid job set manifest: {e}", path=root) from e

    jobs: List[JobView] = []
    for job_dir in StateStore._job_dirs(root):
        manifest_file = job_dir / MANIFEST
        result_path = job_dir / RESULT
        try:
            # no manifest yet: the run stopped right after mkdir, job is unfinished
            job_manifest = (
                JobManifest.model_validate_json(manifest_file.read_bytes())
                if manifest_file.exists()
                else None
            )
            result = (
                JobResult.model_validate_json(result_path.read_bytes())
                if result_path.exists()
                else None
            )
        except ValidationError as e:
            raise MatrixCIError(f"Invalid job record: {e}", path=job_dir) from e
        jobs.append(JobView(path=job_dir, manifest=job_manifest, result=result))

    view = JobSetView(
        path=root,
        manifest=manifest,
        jobs=jobs,
        sealed=(root / SEALED).exists(),
    )
    if require_complete and not view.complete:
        unfinished = [j.name for j in view.jobs if not j.finished]
        raise IncompleteJobSetError(
            "Job set has unfinished jobs",
            path=root,
            details={"unfinished": ", ".join(unfinished)},
        )
    return view
