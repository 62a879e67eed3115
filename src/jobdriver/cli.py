"""CLI entry point for jobdriver using Typer."""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.console import Console
from rich.markup import escape

from jobdriver import APPLICATION_NAME, __version__
from jobdriver.application import USAGE, Application, GlobalOptions
from jobdriver.context import DEFAULT_ENV
from jobdriver.events import BeforeOptionParsingEvent, HookRegistry, HookStage, hooks
from jobdriver.jobs import list_job_classes
from jobdriver.log_path import DEFAULT_REMOTE_KEY, LogFilePath
from jobdriver.logger import configure_logging
from jobdriver.models import ApplicationError, OptionError

__all__ = ["app", "is_debug", "main", "run"]

DEBUG_ENV_VAR = "JOBDRIVER_DEBUG"

app = typer.Typer(
    name=APPLICATION_NAME,
    help="Run one batch job under lifecycle hooks, capturing its output to a log file.",
    add_completion=False,
)

console = Console(highlight=False, emoji=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, emoji=False, soft_wrap=True)


def _click_error_types(name: str) -> tuple[type[Exception], ...]:
    """Click exception class by name, from click and from Typer's bundled copy.

    Recent Typer releases ship their own Click, so global option errors are
    not instances of the ``click`` package classes job options raise.
    """
    found: list[type[Exception]] = [getattr(click, name)]
    for cls in typer.BadParameter.__mro__:
        if cls.__name__ == name and cls not in found:
            found.append(cls)
    return tuple(found)


USAGE_ERRORS = _click_error_types("UsageError")
CLICK_ERRORS = _click_error_types("ClickException")


def is_debug() -> bool:
    """Process-wide debug flag: let usage and application errors propagate."""
    return os.environ.get(DEBUG_ENV_VAR, "").lower() in {"1", "true", "yes", "on"}


def _version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        console.print(f"{APPLICATION_NAME} version {__version__}")
        raise typer.Exit()


def _list_job_class_callback(value: bool) -> None:
    if value:
        for class_id in list_job_classes():
            typer.echo(class_id)
        raise typer.Exit()


def _parse_assignment(assignment: str) -> tuple[str, str]:
    name, sep, value = assignment.partition("=")
    if not sep or not name:
        raise typer.BadParameter(f"NAME=VALUE expected: {assignment}", param_hint="'--variable'")
    return name, value


def _parse_remote_log(value: str) -> tuple[str, LogFilePath]:
    """Split STORE:KEY; an empty key means the standard layout."""
    store, _, key = value.partition(":")
    if not store:
        raise typer.BadParameter(f"STORE:KEY expected: {value}", param_hint="'--remote-log'")
    return store, LogFilePath(key.strip() or DEFAULT_REMOTE_KEY)


@app.command(context_settings={"allow_interspersed_args": False})
def run_job(
    ctx: typer.Context,
    job_args: Annotated[
        list[str] | None,
        typer.Argument(metavar="JOB_CLASS JOB_OPTIONS...", help="Job class and its options."),
    ] = None,
    job_file: Annotated[
        Path | None,
        typer.Option("--job", "-f", help="Give job parameters via job file (YAML)."),
    ] = None,
    environment: Annotated[
        str | None,
        typer.Option("--environment", "-e", help=f"Execution environment (default: {DEFAULT_ENV})."),
    ] = None,
    home: Annotated[
        Path | None,
        typer.Option("--home", "-C", help="Application home directory."),
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", "-n", help="Show job script without executing it.")] = False,
    explain: Annotated[bool, typer.Option("--explain", "-E", help="Show the execution plan only.")] = False,
    log_dir: Annotated[Path | None, typer.Option("--log-dir", "-L", help="Log file directory.")] = None,
    log_path: Annotated[str | None, typer.Option("--log-path", help="Log file path template.")] = None,
    remote_log: Annotated[
        str | None,
        typer.Option("--remote-log", metavar="STORE:KEY", help="Ship the log file to a remote store."),
    ] = None,
    list_global_variables: Annotated[
        bool, typer.Option("--list-global-variables", help="List global variables.")
    ] = False,
    list_variables: Annotated[bool, typer.Option("--list-variables", help="List all variables.")] = False,
    list_declarations: Annotated[
        bool, typer.Option("--list-declarations", help="List script variable declarations.")
    ] = False,
    require: Annotated[
        list[str] | None,
        typer.Option("--require", "-r", metavar="MODULE", help="Import a module registering hooks or job classes."),
    ] = None,
    variable: Annotated[
        list[str] | None,
        typer.Option("--variable", "-v", metavar="NAME=VALUE", help="Set a global variable."),
    ] = None,
    list_job_class: Annotated[
        bool,
        typer.Option(
            "--list-job-class",
            callback=_list_job_class_callback,
            is_eager=True,
            help="List job class names and exit.",
        ),
    ] = False,
    version_flag: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit."),
    ] = False,
) -> int:
    """Run a job given by class name or by job file.

    Example:
        jobdriver sh --command 'echo hello'
        jobdriver -L /var/log/jobs --job etl/load_users.job
    """
    if log_path is not None:
        log_path_format = LogFilePath(log_path)
    elif log_dir is not None:
        log_path_format = LogFilePath.for_dir(log_dir)
    else:
        log_path_format = LogFilePath.default()

    remote_store, remote_key_format = _parse_remote_log(remote_log) if remote_log else (None, None)

    options = GlobalOptions(
        job_file=job_file,
        environment=environment,
        home=home,
        dry_run=dry_run,
        explain=explain,
        log_path_format=log_path_format,
        remote_store=remote_store,
        remote_key_format=remote_key_format,
        list_global_variables=list_global_variables,
        list_variables=list_variables,
        list_declarations=list_declarations,
        requires=tuple(require or ()),
        global_variables=dict(_parse_assignment(a) for a in variable or ()),
    )
    hook_registry = ctx.obj if isinstance(ctx.obj, HookRegistry) else hooks
    return Application(hook_registry).run(options, job_args or [])


def main(argv: Sequence[str] | None = None, hook_registry: HookRegistry | None = None) -> int:
    """Parse the command line, run the job and return the exit status.

    Exit codes: 0 success or listing, 1 usage or application error,
    otherwise the job's own status.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    registry = hook_registry if hook_registry is not None else hooks
    configure_logging()
    registry.run(HookStage.BEFORE_OPTION_PARSING, BeforeOptionParsingEvent(tuple(args)))
    try:
        status = app(args=args, prog_name=APPLICATION_NAME, standalone_mode=False, obj=registry)
    except USAGE_ERRORS as e:
        if is_debug():
            raise
        usage = e.ctx.get_usage() if e.ctx is not None else USAGE
        return _usage_exit(e.format_message(), usage)
    except OptionError as e:
        if is_debug():
            raise
        return _usage_exit(str(e), e.usage or USAGE)
    except ApplicationError as e:
        if is_debug():
            raise
        return _error_exit(str(e))
    except CLICK_ERRORS as e:
        if is_debug():
            raise
        return _error_exit(e.format_message())
    return status if isinstance(status, int) else 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


def _usage_exit(message: str, usage: str) -> int:
    _print_error(message)
    err_console.print(escape(usage))
    err_console.print(f"Try '{APPLICATION_NAME} --help' for help.")
    return 1


def _error_exit(message: str) -> int:
    _print_error(message)
    return 1


def _print_error(message: str) -> None:
    err_console.print(f"{APPLICATION_NAME}: error: {escape(message)}")


if __name__ == "__main__":
    run()
