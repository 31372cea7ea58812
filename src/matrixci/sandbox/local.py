# sandbox/local.py
from __future__ import annotations

import os
import shutil
import signal
import subprocess
import tempfile
from pathlib import Path

from matrixci.model import Completed, Environment, ExecutionOutcome, SandboxFailure, SourceRef
from matrixci.ui.console import Console, get_console

from .executor import OutputSink, build_script, sandbox_variables


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class LocalExecutor:
    """
    Runs the build as a local subprocess.

    Each job gets a private copy of the checkout in a temp directory and its
    own process group, so a timeout can kill everything the build spawned.
    """

    def __init__(
        self,
        timeout_seconds: float,
        *,
        shell: str = "/bin/sh",
        console: Console | None = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self.shell = shell
        self.console = console or get_console()

    def execute(self, environment: Environment, source: SourceRef, sink: OutputSink) -> ExecutionOutcome:
        work_dir = Path(tempfile.mkdtemp(prefix="matrixci-"))
        try:
            app = work_dir / "app"
            try:
                shutil.copytree(source.checkout, app, symlinks=True)
            except (OSError, shutil.Error) as e:
                sink.note(f"could not prepare work dir: {e}")
                return SandboxFailure(f"prepare failed: {e}")

            env = os.environ.copy()
            env.update(sandbox_variables(environment, sink.artifacts_dir))

            self.console.print_debug(f"local sandbox {work_dir} for {environment}")
            try:
                proc = subprocess.Popen(
                    [self.shell, "-c", build_script(source)],
                    cwd=str(app),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                sink.note(f"could not start build: {e}")
                return SandboxFailure(f"spawn failed: {e}")

            try:
                out, _ = proc.communicate(timeout=self.timeout_seconds)
            except subprocess.TimeoutExpired:
                _kill_group(proc)
                out, _ = proc.communicate()
                sink.write(out or b"")
                sink.note(f"timed out after {self.timeout_seconds}s, build killed")
                return SandboxFailure("timeout")

            sink.write(out or b"")
            return Completed(exit_status=proc.returncode)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
