"""Tests for the bounded-concurrency scheduler."""

from __future__ import annotations

import pytest

from matrixci.errors import AllocationError, RunAborted
from matrixci.matrix import expand
from matrixci.model import Completed, Environment, JobStatus, SandboxFailure
from matrixci.scheduler import Scheduler, run_matrix
from matrixci.store import StateStore, open_job_set
from matrixci.summary import summarize


def _envs(n):
    return [Environment.from_mapping({"runtime": f"r{i:02d}"}) for i in range(n)]


class TestScheduler:
    """Tests for Scheduler.run."""

    def test_two_environment_scenario(self, store, repository, source, scripted_executor):
        """{runtime: [A, B], env: X} gives jobs #1 and #2 in sorted order."""
        envs = expand({"runtime": ["B", "A"], "env": "X"})
        handle = store.create_job_set(repository)

        jobs = Scheduler(store, scripted_executor()).run(handle, envs, source, 2)

        assert [j.ordinal for j in jobs] == [1, 2]
        assert [j.environment.as_dict() for j in jobs] == [
            {"runtime": "A", "env": "X"},
            {"runtime": "B", "env": "X"},
        ]
        assert all(j.status is JobStatus.PASSED for j in jobs)
        view = open_job_set(handle.path, require_complete=True)
        assert [j.manifest.env_name for j in view.jobs] == ["runtime=A; env=X", "runtime=B; env=X"]

    def test_never_exceeds_max_concurrency(self, store, repository, source, scripted_executor):
        executor = scripted_executor(delay=0.05)
        handle = store.create_job_set(repository)

        jobs = Scheduler(store, executor).run(handle, _envs(9), source, 3)

        assert len(jobs) == 9
        assert 1 <= executor.peak <= 3
        assert executor.active == 0

    def test_single_slot_runs_in_expansion_order(self, store, repository, source, scripted_executor):
        executor = scripted_executor()
        envs = _envs(5)
        handle = store.create_job_set(repository)

        Scheduler(store, executor).run(handle, envs, source, 1)

        assert executor.peak == 1
        assert executor.calls == envs

    def test_nonzero_exit_is_failed(self, store, repository, source, scripted_executor):
        envs = _envs(2)
        executor = scripted_executor(outcomes={envs[1].describe(): Completed(2)})
        handle = store.create_job_set(repository)

        jobs = Scheduler(store, executor).run(handle, envs, source, 2)

        assert [j.status for j in jobs] == [JobStatus.PASSED, JobStatus.FAILED]

    def test_executor_exception_is_absorbed(self, store, repository, source, scripted_executor):
        envs = _envs(3)
        executor = scripted_executor(outcomes={envs[0].describe(): RuntimeError("sandbox exploded")})
        handle = store.create_job_set(repository)

        jobs = Scheduler(store, executor).run(handle, envs, source, 2)

        assert [j.status for j in jobs] == [JobStatus.FAILED, JobStatus.PASSED, JobStatus.PASSED]
        log = (jobs[0].path / "log").read_bytes()
        assert b"sandbox exploded" in log

    def test_log_is_recorded(self, store, repository, source, scripted_executor):
        envs = _envs(1)
        handle = store.create_job_set(repository)

        (job,) = Scheduler(store, scripted_executor()).run(handle, envs, source, 1)

        assert (job.path / "log").read_bytes() == f"building {envs[0]}\n".encode()
        assert job.started_at is not None
        assert job.ended_at >= job.started_at

    def test_on_job_added_callback(self, store, repository, source, scripted_executor):
        seen = []
        handle = store.create_job_set(repository)
        Scheduler(store, scripted_executor(), on_job_added=lambda j: seen.append(j.ordinal)).run(
            handle, _envs(3), source, 1
        )
        assert sorted(seen) == [1, 2, 3]

    def test_invalid_concurrency(self, store, repository, source, scripted_executor):
        handle = store.create_job_set(repository)
        with pytest.raises(ValueError):
            Scheduler(store, scripted_executor()).run(handle, _envs(1), source, 0)


class _FailingStore(StateStore):
    """Store that cannot allocate one particular job."""

    def __init__(self, root, bad_ordinal):
        super().__init__(root)
        self.bad_ordinal = bad_ordinal

    def add_job(self, handle, environment, ordinal):
        if ordinal == self.bad_ordinal:
            raise AllocationError("disk full", path=handle.path / str(ordinal))
        return super().add_job(handle, environment, ordinal)


class TestAbort:
    """A store fault aborts the run instead of skipping a job."""

    def test_allocation_failure_aborts(self, tmp_path, repository, source, scripted_executor):
        store = _FailingStore(tmp_path / "jobsets", bad_ordinal=2)
        handle = store.create_job_set(repository)

        with pytest.raises(RunAborted) as exc_info:
            Scheduler(store, scripted_executor()).run(handle, _envs(4), source, 1)

        assert exc_info.value.phase == "add job"
        assert exc_info.value.jobset == handle.path
        assert isinstance(exc_info.value.cause, AllocationError)
        assert not (handle.path / "sealed").exists()

    def test_run_matrix_leaves_unsealed_set(self, tmp_path, repository, source, scripted_executor):
        store = _FailingStore(tmp_path / "jobsets", bad_ordinal=1)

        with pytest.raises(RunAborted) as exc_info:
            run_matrix(store, scripted_executor(), repository, _envs(2), source, 1)

        jobset = exc_info.value.jobset
        assert jobset is not None and jobset.exists()
        assert open_job_set(jobset).sealed is False


class TestRunMatrix:
    """End-to-end: create, schedule, seal, summarize."""

    def test_timeout_in_one_environment(self, store, repository, source, scripted_executor):
        envs = expand({"runtime": ["A", "B", "C"], "env": "X"})
        executor = scripted_executor(outcomes={"runtime=B; env=X": SandboxFailure("timeout")})

        handle = run_matrix(store, executor, repository, envs, source, 2)

        view = open_job_set(handle.path, require_complete=True)
        assert view.sealed
        assert [j.status for j in view.jobs] == [JobStatus.PASSED, JobStatus.FAILED, JobStatus.PASSED]
        summary = summarize(view)
        assert summary.passed is False
        assert [j.name for j in summary.failed_jobs] == ["#2"]

    def test_all_pass(self, store, repository, source, scripted_executor):
        handle = run_matrix(store, scripted_executor(), repository, _envs(4), source, 4)
        summary = summarize(open_job_set(handle.path))
        assert summary.passed is True
        assert len(summary.jobs) == 4

    def test_empty_expansion_still_seals(self, store, repository, source, scripted_executor):
        handle = run_matrix(store, scripted_executor(), repository, [], source, 2)
        view = open_job_set(handle.path)
        assert view.sealed
        assert view.jobs == []
