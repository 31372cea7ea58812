# scheduler.py
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence

from .errors import MatrixCIError, RunAborted
from .model import (
    Environment,
    JobHandle,
    JobSetHandle,
    JobStatus,
    RepositoryIdentity,
    SandboxFailure,
    SourceRef,
    now_utc,
    outcome_passed,
)
from .sandbox.executor import OutputSink, SandboxExecutor
from .store import StateStore
from .ui.console import Console, get_console

JobCallback = Callable[[JobHandle], None]


class Scheduler:
    """
    Bounded-concurrency dispatcher.

    One pool thread per in-flight environment, at most `max_concurrency` at a
    time. Environments are submitted in expansion order; results are recorded
    in whatever order builds finish.

    Failures of a single build (non-zero exit, sandbox crash, timeout, an
    exception from the executor) become that job's `failed` status. Failures
    of the state store abort the run with RunAborted.
    """

    def __init__(
        self,
        store: StateStore,
        executor: SandboxExecutor,
        *,
        console: Console | None = None,
        on_job_added: Optional[JobCallback] = None,
    ):
        self.store = store
        self.executor = executor
        self.console = console or get_console()
        self.on_job_added = on_job_added

    # ------------------------------------------------------------------
    # one environment
    # ------------------------------------------------------------------

    def _run_one(
        self,
        handle: JobSetHandle,
        environment: Environment,
        ordinal: int,
        source: SourceRef,
    ) -> JobHandle:
        try:
            job = self.store.add_job(handle, environment, ordinal)
            staging = self.store.staging_dir(job)
        except MatrixCIError as e:
            raise RunAborted(phase="add job", jobset=handle.path, cause=e, details={"job": f"#{ordinal}"}) from e

        if self.on_job_added is not None:
            self.on_job_added(job)

        sink = OutputSink(staging)
        job.advance(JobStatus.RUNNING)
        started_at = now_utc()
        self.console.print_job_start(job)

        try:
            outcome = self.executor.execute(environment, source, sink)
        except Exception as e:
            # the executor is a collaborator: its faults belong to this job only
            sink.note(f"executor error: {type(e).__name__}: {e}")
            outcome = SandboxFailure(f"executor error: {e}")

        ended_at = now_utc()
        status = JobStatus.PASSED if outcome_passed(outcome) else JobStatus.FAILED

        try:
            self.store.record_result(job, status, started_at, ended_at, sink.getvalue(), staging)
        except MatrixCIError as e:
            raise RunAborted(phase="record result", jobset=handle.path, cause=e, details={"job": job.name}) from e

        job.advance(status)
        detail = outcome.reason if isinstance(outcome, SandboxFailure) else f"exit={outcome.exit_status}"
        self.console.print_job_finished(job, detail)
        return job

    # ------------------------------------------------------------------
    # whole run
    # ------------------------------------------------------------------

    def run(
        self,
        handle: JobSetHandle,
        environments: Sequence[Environment],
        source: SourceRef,
        max_concurrency: int,
    ) -> List[JobHandle]:
        """
        Run every environment and record its result. Blocks until done.

        Returns:
            Job handles ordered by ordinal, all in a terminal status

        Raises:
            RunAborted: a job could not be allocated or recorded; pending
              environments are not started and in-flight ones are drained first
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        jobs: Dict[int, JobHandle] = {}
        abort: Optional[RunAborted] = None

        with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="matrixci") as pool:
            in_flight: Dict[Future, int] = {}
            for ordinal, env in enumerate(environments, start=1):
                fut = pool.submit(self._run_one, handle, env, ordinal, source)
                in_flight[fut] = ordinal

            for fut in as_completed(list(in_flight)):
                if fut.cancelled():
                    continue
                try:
                    job = fut.result()
                    jobs[job.ordinal] = job
                    continue
                except RunAborted as e:
                    fault = e
                except Exception as e:
                    fault = RunAborted(
                        phase="worker", jobset=handle.path, cause=e, details={"job": f"#{in_flight[fut]}"}
                    )

                if abort is None:
                    abort = fault
                    self.console.print_error(
                        "Run aborting",
                        f"{fault.phase} failed for {fault.details.get('job', '?')}; not starting remaining jobs",
                    )
                    for other in in_flight:
                        other.cancel()
                else:
                    self.console.print_debug(f"additional fault while aborting: {fault}")

        if abort is not None:
            raise abort

        return [jobs[k] for k in sorted(jobs)]


def run_matrix(
    store: StateStore,
    executor: SandboxExecutor,
    repository: RepositoryIdentity,
    environments: Sequence[Environment],
    source: SourceRef,
    max_concurrency: int,
    *,
    console: Console | None = None,
    on_job_added: Optional[JobCallback] = None,
) -> JobSetHandle:
    """
    Create a job set, run every environment into it, then seal it.

    Any orchestration fault surfaces as RunAborted; the unsealed set (if it
    was created) stays on disk for inspection.
    """
    console = console or get_console()

    try:
        handle = store.create_job_set(repository)
    except MatrixCIError as e:
        raise RunAborted(phase="create jobset", jobset=None, cause=e) from e
    console.print_jobset_created(str(handle.path))

    scheduler = Scheduler(store, executor, console=console, on_job_added=on_job_added)
    scheduler.run(handle, environments, source, max_concurrency)

    try:
        store.seal_job_set(handle)
    except MatrixCIError as e:
        raise RunAborted(phase="seal jobset", jobset=handle.path, cause=e) from e
    return handle
