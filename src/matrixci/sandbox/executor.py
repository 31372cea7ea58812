# sandbox/executor.py
from __future__ import annotations

import base64
import io
import json
import shlex
import threading
from pathlib import Path
from typing import Dict, Protocol, runtime_checkable

from matrixci.model import Environment, ExecutionOutcome, SourceRef

ENVIRONMENT_VAR = "MATRIXCI_ENVIRONMENT"
ARTIFACTS_VAR = "MATRIXCI_ARTIFACTS_DIR"


class OutputSink:
    """
    Where a sandbox writes for one job: a log buffer and an artifact directory.

    The log is buffered in memory and handed to the state store when the job
    finishes, so partial logs never land in the job directory.
    """

    def __init__(self, artifacts_dir: Path):
        self.artifacts_dir = Path(artifacts_dir)
        self._buf = io.BytesIO()
        self._lock = threading.Lock()

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            return self._buf.write(data)

    def note(self, message: str) -> None:
        """Append a runner-side line to the log."""
        self.write(f"\n[matrixci] {message}\n")

    def getvalue(self) -> bytes:
        with self._lock:
            return self._buf.getvalue()


@runtime_checkable
class SandboxExecutor(Protocol):
    """
    Runs one environment's build in isolation.

    Must block until the build ends or the hard timeout elapses. A timeout
    returns SandboxFailure("timeout") after the sandbox has been torn down.
    Failures of the sandbox itself are returned, not raised.
    """

    def execute(self, environment: Environment, source: SourceRef, sink: OutputSink) -> ExecutionOutcome:
        ...


# ---------------------------------------------------------------------
# Environment transfer
# ---------------------------------------------------------------------

def encode_environment(environment: Environment) -> str:
    """Serialize an assignment into a shell-safe token (base64 of JSON)."""
    raw = json.dumps(environment.as_dict(), sort_keys=True, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_environment(token: str) -> Environment:
    raw = base64.b64decode(token.encode("ascii"), validate=True)
    return Environment.from_mapping(json.loads(raw.decode("utf-8")))


def env_axis_variables(value: object) -> Dict[str, str]:
    """
    Split an `env` axis value like 'FOO=1 BAR="a b"' into variables.

    Tokens without '=' are ignored.
    """
    if value is None:
        return {}
    out: Dict[str, str] = {}
    for token in shlex.split(str(value)):
        key, sep, val = token.partition("=")
        if sep and key:
            out[key] = val
    return out


def sandbox_variables(environment: Environment, artifacts_dir: str | Path) -> Dict[str, str]:
    """Variables every sandbox receives for one job."""
    variables = {
        "CI": "true",
        "MATRIXCI": "true",
        ENVIRONMENT_VAR: encode_environment(environment),
        ARTIFACTS_VAR: str(artifacts_dir),
    }
    if "runtime" in environment:
        variables["MATRIXCI_RUNTIME"] = str(environment["runtime"])
    variables.update(env_axis_variables(environment.get("env")))
    return variables


def build_script(source: SourceRef) -> str:
    """The shell program run inside the sandbox: stop at the first failing command."""
    return "\n".join(["set -e", *source.commands]) + "\n"
