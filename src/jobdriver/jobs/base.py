"""Base class and registry for job classes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

import click
import jsonschema

from jobdriver.config import variable_string
from jobdriver.log_locator import LogLocator
from jobdriver.models import ApplicationError, ConfigError, JobFailure, JobRef, JobResult, OptionError, ParameterError

if TYPE_CHECKING:
    from jobdriver.context import JobExecutionContext

__all__ = [
    "Declaration",
    "Job",
    "get_job_class",
    "list_job_classes",
    "register_job_class",
]


@dataclass(frozen=True)
class Declaration:
    """A variable a job script refers to."""

    name: str
    default: str | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not None


class Job(ABC):
    """Abstract base class for all job classes.

    A job is created from a job file or a bare class id, configured from
    command line options, compiled, and finally executed once:
    - parse_options() merges job options into the parameters
    - compile() resolves variables and renders the script
    - execute() runs the job inside the log locator's redirection
    """

    class_id: ClassVar[str]
    PARAMS_SCHEMA: ClassVar[dict[str, Any]] = {}

    def __init__(
        self,
        job_id: str,
        subsystem: str | None,
        context: JobExecutionContext,
        params: dict[str, Any] | None = None,
    ) -> None:
        self._id = job_id
        self._subsystem = subsystem
        self._context = context
        self._params: dict[str, Any] = dict(params or {})
        self._variables: dict[str, str] | None = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def subsystem(self) -> str | None:
        return self._subsystem

    @property
    def context(self) -> JobExecutionContext:
        return self._context

    @property
    def params(self) -> dict[str, Any]:
        return dict(self._params)

    @property
    def ref(self) -> JobRef:
        return JobRef(self._subsystem, self._id, "-")

    @property
    def jobnet_id(self) -> str:
        """Id of the single-job network this driver runs."""
        return str(self.ref)

    @property
    def compiled(self) -> bool:
        return self._variables is not None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.ref}>"

    @classmethod
    def validate_params(cls, params: dict[str, Any]) -> list[ConfigError]:
        """Validate job parameters against PARAMS_SCHEMA.

        Returns:
            List of ConfigError for any validation failures.
            Empty list if the parameters are valid.
        """
        if not cls.PARAMS_SCHEMA:
            return []

        validator = jsonschema.Draft7Validator(cls.PARAMS_SCHEMA)
        errors: list[ConfigError] = []
        for error in validator.iter_errors(params):
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            errors.append(ConfigError(path=path, message=error.message))
        return errors

    def option_params(self) -> list[click.Parameter]:
        """Command line options this job class accepts."""
        return []

    def apply_options(self, values: dict[str, Any]) -> None:
        """Merge parsed option values over the job parameters."""
        for name, value in values.items():
            if value is None or value == ():
                continue
            self._params[name] = value

    def parse_options(self, args: list[str], prog_name: str) -> list[str]:
        """Parse job options and return the arguments left over.

        Raises:
            OptionError: On unknown options or bad option values
        """
        command = click.Command(
            self.class_id,
            params=self.option_params(),
            context_settings={"allow_extra_args": True},
        )
        try:
            ctx = command.make_context(f"{prog_name} {self.class_id}", list(args))
        except click.UsageError as e:
            usage = e.ctx.get_usage() if e.ctx is not None else None
            raise OptionError(e.format_message(), usage=usage) from e
        self.apply_options(dict(ctx.params))
        return list(ctx.args)

    def resolve_variables(self) -> dict[str, str]:
        """Global variables overridden by the job's own ``variables``."""
        variables = self._context.resolve_global_variables()
        for name, value in (self._params.get("variables") or {}).items():
            variables[str(name)] = variable_string(value)
        return variables

    def compile(self) -> None:
        """Resolve variables and prepare the job for execution."""
        variables = self.resolve_variables()
        self.do_compile(variables)
        self._variables = variables

    def do_compile(self, variables: dict[str, str]) -> None:
        """Hook for subclasses to render their script."""

    @property
    def variables(self) -> dict[str, str]:
        if self._variables is None:
            raise ApplicationError(f"job {self.ref} is not compiled")
        return dict(self._variables)

    @property
    def declarations(self) -> list[Declaration]:
        return []

    @abstractmethod
    def script_source(self) -> str:
        """Compiled script text, as shown by --dry-run."""
        ...

    def explain(self) -> None:
        """Print the execution plan without running the job."""
        raise ApplicationError(f"job class {self.class_id} does not support --explain")

    def execute(self, log_locator: LogLocator | None = None) -> JobResult:
        """Run the job with its output captured by the log locator.

        A JobFailure raised by the body becomes a failed result; any other
        exception propagates after the streams are restored.
        """
        locator = log_locator if log_locator is not None else LogLocator.empty()
        if not self.compiled:
            self.compile()
        try:
            return locator.redirect_stdouts(self.run, locator)
        except JobFailure as e:
            return JobResult.for_failure(e.status, str(e))

    @abstractmethod
    def run(self, log_locator: LogLocator) -> JobResult:
        """Job body; called with stdout/stderr already redirected."""
        ...


_job_classes: dict[str, type[Job]] = {}


def register_job_class[J: type[Job]](cls: J) -> J:
    """Class decorator adding a job class to the registry under its class_id."""
    class_id = getattr(cls, "class_id", None)
    if not class_id:
        raise ValueError(f"{cls.__name__} has no class_id")
    _job_classes[class_id] = cls
    return cls


def get_job_class(class_id: str) -> type[Job]:
    try:
        return _job_classes[class_id]
    except KeyError:
        raise ParameterError(f"no such job class: {class_id}") from None


def list_job_classes() -> list[str]:
    return sorted(_job_classes)
