from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

DEFAULT_OUTPUT_DIR = ".matrixci/jobsets"
DEFAULT_JOBS = 1
DEFAULT_TIMEOUT_SECONDS = 3600.0
DEFAULT_EXECUTOR = "local"
DEFAULT_DOCKER_IMAGE = "python:{runtime}"
DEFAULT_MATRIX_FILE = ".matrixci.yml"


def _int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _timeout(raw: Optional[str], default: float) -> float:
    if raw is None or not raw.strip():
        return default
    return _positive_timeout(float(raw))


def _positive_timeout(value: float) -> float:
    """Every job runs under a hard timeout; there is no way to turn it off."""
    if value <= 0:
        raise ValueError(f"timeout must be > 0 seconds, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Resolved configuration, handed to each component at construction."""
    output_dir: str = DEFAULT_OUTPUT_DIR
    jobs: int = DEFAULT_JOBS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    executor: str = DEFAULT_EXECUTOR
    docker_image: str = DEFAULT_DOCKER_IMAGE
    matrix_file: str = DEFAULT_MATRIX_FILE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            output_dir=env.get("MATRIXCI_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
            jobs=_int(env.get("MATRIXCI_JOBS"), DEFAULT_JOBS),
            timeout_seconds=_timeout(env.get("MATRIXCI_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS),
            executor=env.get("MATRIXCI_EXECUTOR", DEFAULT_EXECUTOR),
            docker_image=env.get("MATRIXCI_DOCKER_IMAGE", DEFAULT_DOCKER_IMAGE),
            matrix_file=env.get("MATRIXCI_MATRIX_FILE", DEFAULT_MATRIX_FILE),
        )

    def with_overrides(self, **overrides: Any) -> Settings:
        """Apply CLI options; None means "not given"."""
        given = {k: v for k, v in overrides.items() if v is not None}
        if "timeout_seconds" in given:
            given["timeout_seconds"] = _positive_timeout(given["timeout_seconds"])
        settings = replace(self, **given)
        if settings.jobs < 1:
            raise ValueError(f"jobs must be >= 1, got {settings.jobs}")
        return settings
