# cli.py
from __future__ import annotations

import sys
import tempfile
import threading
from pathlib import Path

import click

from matrixci.errors import (
    DefinitionError,
    IncompleteJobSetError,
    MatrixCIError,
    RunAborted,
    VersionMismatchError,
)
from matrixci.git_facts.git import GitError, clone, commit_identity
from matrixci.matrix import build_script, expand, find_matrix_file, load_definition
from matrixci.model import JobHandle, SourceRef
from matrixci.sandbox import EXECUTORS, make_executor
from matrixci.scheduler import run_matrix
from matrixci.settings import Settings
from matrixci.store import StateStore, open_job_set
from matrixci.summary import Summary, summarize
from matrixci.ui.console import Console, get_console, set_console


def _fail(ctx: click.Context, exc: BaseException, title: str, suggestion: str | None = None) -> None:
    console = get_console()
    details = None
    if isinstance(exc, MatrixCIError):
        message = exc.message
        details = [f"path={exc.path}"] if exc.path else []
        details.extend(f"{k}={v}" for k, v in exc.details.items())
    else:
        message = str(exc)
    console.print_error(title, message, details=details or None, suggestion=suggestion)
    if ctx.obj.get("debug", False):
        console.print_exception(exc)
    sys.exit(1)


def _fail_aborted(ctx: click.Context, exc: RunAborted) -> None:
    console = get_console()
    details = [f"phase={exc.phase}"]
    if exc.jobset is not None:
        details.append(f"jobset={exc.jobset} (left unsealed for inspection)")
    details.extend(f"{k}={v}" for k, v in exc.details.items())
    message = (str(exc.cause).splitlines() or [type(exc.cause).__name__])[0]
    console.print_error("Run aborted", message, details=details)
    if ctx.obj.get("debug", False):
        console.print_exception(exc.cause)
    sys.exit(1)


def _write_summary_json(summary: Summary, target: str) -> None:
    data = summary.model_dump_json(indent=2)
    if target == "-":
        click.echo(data)
    else:
        Path(target).write_text(data + "\n", encoding="utf-8")


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci - run a build matrix in sandboxes and report the verdict."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = Settings.from_env()
    except ValueError as e:
        console.print_error("Invalid configuration", str(e), suggestion="Check the MATRIXCI_* environment variables.")
        sys.exit(1)


@cli.command()
@click.argument("repository")
@click.argument("commit", required=False)
@click.option("--output-dir", "-o", default=None, help="Directory that receives job sets")
@click.option("--jobs", "-j", default=None, type=int, help="Number of concurrent builds")
@click.option("--limit", default=None, type=int, help="Only run the first N environments")
@click.option("--timeout", default=None, type=float, help="Hard per-job timeout in seconds (must be > 0)")
@click.option("--executor", default=None, type=click.Choice(EXECUTORS), help="Sandbox to run builds in")
@click.option("--image", default=None, help="Docker image template, e.g. 'python:{runtime}'")
@click.option("--matrix-file", default=None, help="Matrix definition file inside the repository")
@click.option("--save-paths", default=None, type=click.Path(dir_okay=False), help="Write created job paths to this file")
@click.pass_context
def run(ctx, repository, commit, output_dir, jobs, limit, timeout, executor, image, matrix_file, save_paths):
    """Clone REPOSITORY at COMMIT and run its build matrix."""
    console = get_console()
    try:
        settings: Settings = ctx.obj["settings"].with_overrides(
            output_dir=output_dir,
            jobs=jobs,
            timeout_seconds=timeout,
            executor=executor,
            docker_image=image,
            matrix_file=matrix_file,
        )
    except ValueError as e:
        _fail(ctx, e, "Invalid option")

    store = StateStore(settings.output_dir, console=console)
    save_file = None
    if save_paths:
        try:
            save_file = open(save_paths, "w", encoding="utf-8")
        except OSError as e:
            _fail(ctx, e, "Cannot open --save-paths file", suggestion="Check that the directory exists and is writable.")
    save_lock = threading.Lock()

    def _save_path(job: JobHandle) -> None:
        if save_file is None:
            return
        with save_lock:
            save_file.write(f"{job.path}\n")
            save_file.flush()

    try:
        with tempfile.TemporaryDirectory(prefix="matrixci-") as work:
            if commit:
                console.print_info(f"Cloning from {repository}, commit {commit}")
            else:
                console.print_info(f"Cloning from {repository}")
            checkout = clone(repository, Path(work) / "app", commit)
            identity = commit_identity(repository, checkout)

            definition = load_definition(find_matrix_file(checkout, settings.matrix_file))
            before_script, script = build_script(definition)
            if not script:
                raise DefinitionError("Matrix definition has no 'script'")
            environments = expand(definition, limit=limit, console=console)

            console.print_run_started(
                repository=identity.name,
                commit=identity.commit,
                job_count=len(environments),
                jobs=settings.jobs,
            )
            source = SourceRef(
                checkout=checkout,
                repository=identity,
                script=script,
                before_script=before_script,
            )
            handle = run_matrix(
                store,
                make_executor(settings, console),
                identity,
                environments,
                source,
                settings.jobs,
                console=console,
                on_job_added=_save_path,
            )

        summary = summarize(open_job_set(handle.path, require_complete=True))
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except GitError as e:
        _fail(ctx, e, "Source fetch failed", suggestion="Check the repository URL and commit.")
    except DefinitionError as e:
        _fail(ctx, e, "Invalid build matrix")
    except RunAborted as e:
        _fail_aborted(ctx, e)
    except MatrixCIError as e:
        _fail(ctx, e, "Run failed")
    finally:
        if save_file is not None:
            save_file.close()

    console.print_summary(summary)
    console.print_info(f"Job set: {handle.path}")
    sys.exit(0 if summary.passed else 1)


@cli.command()
@click.argument("jobset_path", type=click.Path(file_okay=False))
@click.option("--json", "json_path", default=None, help="Write the summary as JSON to this file ('-' for stdout)")
@click.option("--seal", is_flag=True, default=False, help="Seal a completed but unsealed job set first")
@click.pass_context
def finalize(ctx, jobset_path, json_path, seal):
    """Verify a finished job set and print its verdict."""
    console = get_console()
    try:
        view = open_job_set(jobset_path, require_complete=True)
        if seal and not view.sealed:
            store = StateStore(view.path.parent, console=console)
            store.seal_job_set(store.handle_for(view))
            view = open_job_set(jobset_path, require_complete=True)
        summary = summarize(view)
    except VersionMismatchError as e:
        _fail(ctx, e, "Unsupported job set format")
    except IncompleteJobSetError as e:
        _fail(
            ctx,
            e,
            "Job set is not complete",
            suggestion="Wait for the run to finish and retry, or use --seal once every job has a result.",
        )
    except MatrixCIError as e:
        _fail(ctx, e, "Cannot read job set")

    if json_path:
        _write_summary_json(summary, json_path)
    if json_path != "-":
        console.print_summary(summary)
    sys.exit(0 if summary.passed else 1)


@cli.command(name="expand")
@click.argument("matrix_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", default=None, type=int, help="Only show the first N environments")
@click.pass_context
def expand_command(ctx, matrix_file, limit):
    """Print the environments a matrix definition expands to."""
    console = get_console()
    try:
        environments = expand(load_definition(matrix_file), limit=limit, console=console)
    except DefinitionError as e:
        _fail(ctx, e, "Invalid build matrix")

    for i, env in enumerate(environments, start=1):
        console.print_info(f"#{i} {env}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
