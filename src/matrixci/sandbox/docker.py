# sandbox/docker.py
from __future__ import annotations

import re
import subprocess
import uuid
from typing import List

from matrixci.model import Completed, Environment, ExecutionOutcome, SandboxFailure, SourceRef
from matrixci.ui.console import Console, get_console

from .executor import OutputSink, build_script, sandbox_variables

CONTAINER_SOURCE = "/src"
CONTAINER_WORKDIR = "/workspace"
CONTAINER_ARTIFACTS = "/artifacts"

# `docker run` itself failed (daemon, image, bad flags) rather than the build
DOCKER_RUN_ERROR = 125


def _sanitize_container_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]+", "-", name).strip("-.")
    if not cleaned or not re.match(r"^[a-zA-Z0-9]", cleaned):
        cleaned = f"matrixci-{cleaned}".strip("-.")
    return cleaned[:128]


class DockerExecutor:
    """
    Runs the build in a throwaway container.

    The checkout is mounted read-only and copied into the container's
    workspace; the job's artifact directory is mounted at /artifacts.
    `image` may reference the runtime axis, e.g. "python:{runtime}".
    """

    def __init__(
        self,
        timeout_seconds: float,
        *,
        image: str = "python:{runtime}",
        default_runtime: str = "latest",
        console: Console | None = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self.image = image
        self.default_runtime = default_runtime
        self.console = console or get_console()

    def image_for(self, environment: Environment) -> str:
        return self.image.format(runtime=environment.get("runtime", self.default_runtime))

    def command(self, name: str, environment: Environment, source: SourceRef, sink: OutputSink) -> List[str]:
        cmd = ["docker", "run", "--rm", "--name", name]
        cmd.extend(["-v", f"{source.checkout.resolve()}:{CONTAINER_SOURCE}:ro"])
        cmd.extend(["-v", f"{sink.artifacts_dir.resolve()}:{CONTAINER_ARTIFACTS}"])

        # argv elements, no shell in between: values need no quoting
        for key, value in sandbox_variables(environment, CONTAINER_ARTIFACTS).items():
            cmd.extend(["-e", f"{key}={value}"])

        script = f"cp -a {CONTAINER_SOURCE} {CONTAINER_WORKDIR} && cd {CONTAINER_WORKDIR}\n" + build_script(source)
        cmd.append(self.image_for(environment))
        cmd.extend(["sh", "-c", script])
        return cmd

    def _remove(self, name: str) -> None:
        try:
            subprocess.run(
                ["docker", "rm", "-f", name],
                capture_output=True,
                check=False,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.console.print_debug(f"docker rm -f {name} failed: {e}")

    def execute(self, environment: Environment, source: SourceRef, sink: OutputSink) -> ExecutionOutcome:
        name = _sanitize_container_name(f"matrixci-{uuid.uuid4().hex[:12]}")
        cmd = self.command(name, environment, source, sink)
        self.console.print_debug(f"docker run {name} ({self.image_for(environment)})")

        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError:
            sink.note("docker CLI not found")
            return SandboxFailure("docker CLI not found")
        except subprocess.TimeoutExpired as e:
            # killing the client leaves the container running
            self._remove(name)
            sink.write(e.output or b"")
            sink.note(f"timed out after {self.timeout_seconds}s, container {name} removed")
            return SandboxFailure("timeout")

        sink.write(proc.stdout or b"")
        if proc.returncode == DOCKER_RUN_ERROR:
            sink.note("docker run failed before the build started")
            return SandboxFailure("docker run failed")
        return Completed(exit_status=proc.returncode)
