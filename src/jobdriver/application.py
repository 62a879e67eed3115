"""Lifecycle driver: runs one job under the fixed hook sequence."""

from __future__ import annotations

import importlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import typer

from jobdriver import APPLICATION_NAME
from jobdriver.context import JobExecutionContext
from jobdriver.events import (
    AfterAllJobsEvent,
    AfterJobEvent,
    BeforeAllJobsEvent,
    BeforeJobEvent,
    HookRegistry,
    HookStage,
    hooks,
)
from jobdriver.jobs import Declaration, Job, instantiate, load_job_file
from jobdriver.log_locator import LogLocator
from jobdriver.log_path import LogFilePath, LogLocatorBuilder
from jobdriver.logger import configure_logging, get_logger
from jobdriver.models import OptionError, ParameterError

__all__ = ["Application", "GlobalOptions", "USAGE"]

logger = get_logger(__name__)

USAGE = (
    f"Usage: {APPLICATION_NAME} [OPTIONS] JOB_CLASS [JOB_OPTIONS]...\n"
    f"       {APPLICATION_NAME} [OPTIONS] --job JOB_FILE -- [JOB_OPTIONS]..."
)


@dataclass(frozen=True)
class GlobalOptions:
    """Global command line options, already parsed."""

    job_file: Path | None = None
    environment: str | None = None
    home: Path | None = None
    dry_run: bool = False
    explain: bool = False
    log_path_format: LogFilePath | None = field(default_factory=LogFilePath.default)
    remote_store: str | None = None
    remote_key_format: LogFilePath | None = None
    list_global_variables: bool = False
    list_variables: bool = False
    list_declarations: bool = False
    requires: tuple[str, ...] = ()
    global_variables: Mapping[str, str] = field(default_factory=dict)

    @property
    def file_mode(self) -> bool:
        return self.job_file is not None


class Application:
    """Runs a single job and derives the process exit status.

    Hook order is fixed: before_all_jobs, before_job, the job itself,
    after_job, after_all_jobs. Hook errors are not caught. Listing and
    validation modes return before any hook fires or any log is captured.
    """

    def __init__(self, hook_registry: HookRegistry | None = None, start_time: datetime | None = None) -> None:
        self._hooks = hook_registry if hook_registry is not None else hooks
        self._start_time = start_time or datetime.now()

    @property
    def start_time(self) -> datetime:
        return self._start_time

    def run(self, options: GlobalOptions, args: Sequence[str]) -> int:
        """Run the job named by options/args and return the exit status.

        Raises:
            OptionError: On usage errors (bad job arguments or options)
            ApplicationError: On expected failures after context creation
        """
        args = list(args)
        _require_modules(options.requires)
        job_class = None if options.file_mode or not args else args[0]
        ctx = JobExecutionContext.for_application(
            home=options.home,
            job_file=options.job_file,
            job_class=job_class,
            environment=options.environment,
            global_variables=options.global_variables,
            start_time=self._start_time,
        )
        configure_logging(ctx.config.log_level)
        logger.debug("context created", home=str(ctx.home), environment=ctx.environment, job=ctx.job_id)

        if options.list_global_variables:
            self._list_variables(ctx.resolve_global_variables())
            return 0

        job = self._load_job(ctx, options, args)
        self._process_job_options(job, options, args)
        job.compile()

        if options.list_declarations:
            self._list_declarations(job.declarations)
            return 0
        if options.list_variables:
            self._list_variables(job.variables)
            return 0
        if options.dry_run:
            typer.echo(job.script_source())
            return 0
        if options.explain:
            job.explain()
            return 0

        builder = LogLocatorBuilder.for_options(
            ctx, options.log_path_format, options.remote_store, options.remote_key_format
        )
        log_locator = self.build_log_locator(builder, job)

        self._hooks.run(HookStage.BEFORE_ALL_JOBS, BeforeAllJobsEvent(job.jobnet_id, (job,)))
        self._hooks.run(HookStage.BEFORE_JOB, BeforeJobEvent(job))
        result = job.execute(log_locator)
        self._hooks.run(HookStage.AFTER_JOB, AfterJobEvent(result))
        self._hooks.run(HookStage.AFTER_ALL_JOBS, AfterAllJobsEvent(result.success, (job,)))
        logger.debug("job finished", job=str(job.ref), status=result.status)
        return result.status

    def build_log_locator(self, builder: LogLocatorBuilder, job: Job) -> LogLocator:
        # One job per run: job and job-network start at the same time
        return builder.build(
            job_ref=job.ref,
            jobnet_id=job.jobnet_id,
            job_start_time=self._start_time,
            jobnet_start_time=self._start_time,
        )

    def _load_job(self, ctx: JobExecutionContext, options: GlobalOptions, args: list[str]) -> Job:
        try:
            if options.job_file is not None:
                return load_job_file(options.job_file, ctx)
            if not args:
                raise OptionError("no job class given", usage=USAGE)
            return instantiate(args.pop(0), ctx)
        except ParameterError as e:
            raise OptionError(str(e), usage=USAGE) from e

    def _process_job_options(self, job: Job, options: GlobalOptions, args: list[str]) -> None:
        rest = job.parse_options(args, APPLICATION_NAME)
        if rest:
            if options.file_mode:
                message = "--job and job class argument is exclusive"
            else:
                message = f"bad argument: {rest[0]}"
            raise OptionError(message, usage=USAGE)

    def _list_variables(self, variables: Mapping[str, str]) -> None:
        for name, value in variables.items():
            typer.echo(f"{name}={value!r}")

    def _list_declarations(self, declarations: Sequence[Declaration]) -> None:
        for decl in declarations:
            if decl.has_default:
                typer.echo(f"{decl.name}\t= {decl.default!r}")
            else:
                typer.echo(decl.name)


def _require_modules(modules: Sequence[str]) -> None:
    """Import extension modules so they can register hooks and job classes."""
    for name in modules:
        try:
            importlib.import_module(name)
        except ImportError as e:
            raise OptionError(f"cannot load module {name}: {e}", usage=USAGE) from e
