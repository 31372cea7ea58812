"""Tests for the result aggregator."""

from __future__ import annotations

import pytest
from conftest import at

from matrixci.errors import IncompleteJobSetError
from matrixci.model import Environment, JobStatus
from matrixci.store import open_job_set
from matrixci.summary import duration_in_words, summarize


def _finished_set(store, repository, records, *, seal=True):
    """records: list of (status, start_offset, end_offset)."""
    handle = store.create_job_set(repository)
    for ordinal, (status, start, end) in enumerate(records, start=1):
        job = store.add_job(handle, Environment.from_mapping({"runtime": str(ordinal)}), ordinal)
        store.record_result(job, status, at(start), at(end), b"")
    if seal:
        store.seal_job_set(handle)
    return open_job_set(handle.path)


class TestSummarize:
    """Tests for summarize()."""

    def test_one_failure_fails_the_set(self, store, repository):
        view = _finished_set(
            store,
            repository,
            [(JobStatus.PASSED, 0, 5), (JobStatus.PASSED, 1, 6), (JobStatus.FAILED, 2, 7)],
        )
        summary = summarize(view)
        assert summary.passed is False
        assert summary.state == "Failed"
        assert [j.name for j in summary.failed_jobs] == ["#3"]

    def test_all_passed(self, store, repository):
        view = _finished_set(store, repository, [(JobStatus.PASSED, 0, 5), (JobStatus.PASSED, 0, 3)])
        summary = summarize(view)
        assert summary.passed is True
        assert summary.state == "Passed"
        assert summary.failed_jobs == []

    def test_time_span(self, store, repository):
        """Start is the earliest job start, end the latest job end."""
        view = _finished_set(
            store,
            repository,
            [(JobStatus.PASSED, 10, 20), (JobStatus.PASSED, 5, 12), (JobStatus.FAILED, 8, 95)],
        )
        summary = summarize(view)
        assert summary.started_at == at(5)
        assert summary.ended_at == at(95)
        assert summary.duration == 90.0
        assert summary.duration_words == "1 min 30 sec"

    def test_jobs_in_ordinal_order(self, store, repository):
        view = _finished_set(store, repository, [(JobStatus.PASSED, 0, 1)] * 3)
        summary = summarize(view)
        assert [j.ordinal for j in summary.jobs] == [1, 2, 3]
        assert summary.jobs[0].env_name == "runtime=1"
        assert summary.repository == repository

    def test_unsealed_set_is_rejected(self, store, repository):
        view = _finished_set(store, repository, [(JobStatus.PASSED, 0, 1)], seal=False)
        with pytest.raises(IncompleteJobSetError):
            summarize(view)

    def test_empty_set_passes(self, store, repository):
        view = _finished_set(store, repository, [])
        summary = summarize(view)
        assert summary.passed is True
        assert summary.started_at is None
        assert summary.duration == 0.0

    def test_json_dump(self, store, repository):
        view = _finished_set(store, repository, [(JobStatus.FAILED, 0, 1)])
        data = summarize(view).model_dump(mode="json")
        assert data["passed"] is False
        assert data["jobs"][0]["status"] == "failed"


class TestDurationInWords:
    """Tests for duration_in_words()."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0, "0 sec"),
            (59.9, "59 sec"),
            (61, "1 min 1 sec"),
            (3600, "1 hour 0 sec"),
            (7384, "2 hours 3 min 4 sec"),
        ],
    )
    def test_words(self, seconds, expected):
        assert duration_in_words(seconds) == expected
