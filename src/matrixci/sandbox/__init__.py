from __future__ import annotations

from typing import TYPE_CHECKING

from .docker import DockerExecutor
from .executor import (
    OutputSink,
    SandboxExecutor,
    decode_environment,
    encode_environment,
    env_axis_variables,
    sandbox_variables,
)
from .local import LocalExecutor

if TYPE_CHECKING:
    from matrixci.settings import Settings
    from matrixci.ui.console import Console

EXECUTORS = ("local", "docker")


def make_executor(settings: Settings, console: Console | None = None) -> SandboxExecutor:
    if settings.executor == "docker":
        return DockerExecutor(settings.timeout_seconds, image=settings.docker_image, console=console)
    if settings.executor == "local":
        return LocalExecutor(settings.timeout_seconds, console=console)
    raise ValueError(f"Unknown executor: {settings.executor!r} (expected one of {EXECUTORS})")


__all__ = [
    "DockerExecutor",
    "EXECUTORS",
    "LocalExecutor",
    "OutputSink",
    "SandboxExecutor",
    "decode_environment",
    "encode_environment",
    "env_axis_variables",
    "make_executor",
    "sandbox_variables",
]
