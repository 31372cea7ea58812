"""Shared fixtures for matrixci tests."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from matrixci.model import Completed, Environment, RepositoryIdentity, SandboxFailure, SourceRef
from matrixci.store import StateStore

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def repository() -> RepositoryIdentity:
    return RepositoryIdentity(
        url="https://example.com/acme/widget.git",
        commit="abc1234",
        sha="abc1234def5678abc1234def5678abc1234def56",
        author="Ada",
        author_email="ada@example.com",
        committer="Grace",
        committer_email="grace@example.com",
        subject="Fix the widget",
    )


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "jobsets")


@pytest.fixture
def checkout(tmp_path) -> Path:
    root = tmp_path / "checkout"
    root.mkdir()
    (root / "marker.txt").write_text("hello\n", encoding="utf-8")
    return root


@pytest.fixture
def source(checkout, repository) -> SourceRef:
    return SourceRef(checkout=checkout, repository=repository, script=("true",))


class ScriptedExecutor:
    """
    Fake sandbox: outcome chosen per environment, optional delay, and a
    count of how many executions are active at once.
    """

    def __init__(self, outcomes=None, delay: float = 0.0, default=None):
        self.outcomes = dict(outcomes or {})
        self.default = default if default is not None else Completed(0)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, environment: Environment, source: SourceRef, sink):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.calls.append(environment)
        try:
            if self.delay:
                time.sleep(self.delay)
            sink.write(f"building {environment}\n")
            outcome = self.outcomes.get(environment.describe(), self.default)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def scripted_executor():
    return ScriptedExecutor


