"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from matrixci.model import JobHandle
    from matrixci.summary import Summary


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # workers print concurrently
        self._lock = threading.Lock()

    def _out(self, message: str, *, err: bool = False) -> None:
        with self._lock:
            print(message, file=sys.stderr if err else sys.stdout, flush=True)

    def print_run_started(
        self,
        repository: str,
        commit: str,
        job_count: int,
        jobs: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED\n"
            f"Repository: {repository}\n"
            f"Commit: {commit or '(default branch)'}\n"
            f"Environments: {job_count}\n"
            f"Concurrency: {jobs}\n"
        )

    def print_jobset_created(self, path: str) -> None:
        self._out(f"JOBSET: {path}")

    def print_job_start(self, job: JobHandle) -> None:
        """Print job start message."""
        self._out(f"[{job.name}] ▶ {job.environment}")

    def print_job_finished(self, job: JobHandle, detail: str = "") -> None:
        suffix = f" ({detail})" if detail else ""
        self._out(f"[{job.name}] {job.status.value.upper()}{suffix}")

    def print_summary(self, summary: Summary) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in summary.jobs:
            lines.append(
                f"  {job.name} {job.status.value.upper():<7} {job.duration:8.1f}s  {job.env_name or '(default)'}"
            )
        lines.append("-" * 40)
        lines.append(f"STATE: {summary.state}")
        if summary.duration_words:
            lines.append(f"Duration: {summary.duration_words}")
        self._out("\n".join(lines))

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
