"""Shell script job class."""

from __future__ import annotations

import re
import shlex
import string
import subprocess
import sys
from pathlib import Path
from typing import Any, ClassVar

import click
import typer

from jobdriver.jobs.base import Declaration, Job, register_job_class
from jobdriver.log_locator import LogLocator
from jobdriver.models import ApplicationError, JobResult, OptionError, ParameterError

__all__ = ["ScriptTemplate", "ShellJob"]

DEFAULT_SHELL = "/bin/sh"


class ScriptTemplate(string.Template):
    """``%{name}`` placeholders; ``%%`` is a literal percent sign.

    Bare ``%`` and ``$`` are left alone so printf formats and shell
    variables pass through untouched.
    """

    delimiter = "%"
    pattern = r"""
    %(?:
      (?P<escaped>%) |
      \{(?P<braced>[_a-z][_a-z0-9]*)\} |
      (?P<named>(?!x)x) |
      (?P<invalid>)
    )
    """


@register_job_class
class ShellJob(Job):
    """Runs a shell command or script file.

    The shell inherits the redirected stdout/stderr, so everything it prints
    ends up in the job log. The job fails with the shell's exit status.
    """

    class_id = "sh"
    PARAMS_SCHEMA: ClassVar[dict[str, Any]] = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "command": {"type": "string"},
            "script": {"type": "string"},
            "shell": {"type": "string"},
            "variables": {
                "type": "object",
                "additionalProperties": {"type": ["string", "number", "boolean"]},
            },
        },
    }
    ERROR_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r"\bERROR:\s*(.*)", re.IGNORECASE)

    _script: str | None = None

    def option_params(self) -> list[click.Parameter]:
        return [
            click.Option(["-c", "--command"], help="Shell command line to run."),
            click.Option(["--script"], type=click.Path(dir_okay=False), help="Script file to run."),
            click.Option(["--shell"], help=f"Shell executable [default: {DEFAULT_SHELL}]."),
            click.Option(
                ["-v", "--variable", "variables"],
                multiple=True,
                metavar="NAME=VALUE",
                help="Set a script variable.",
            ),
        ]

    def apply_options(self, values: dict[str, Any]) -> None:
        assignments = values.pop("variables", ())
        super().apply_options(values)
        if not assignments:
            return
        variables = dict(self._params.get("variables") or {})
        for assignment in assignments:
            name, sep, value = assignment.partition("=")
            if not sep or not name:
                raise OptionError(f"bad variable assignment (NAME=VALUE expected): {assignment}")
            variables[name] = value
        self._params["variables"] = variables

    @property
    def shell(self) -> str:
        return self._params.get("shell") or DEFAULT_SHELL

    def _source(self) -> str:
        command = self._params.get("command")
        script = self._params.get("script")
        if command and script:
            raise ParameterError("sh: command and script are exclusive")
        if command:
            return command
        if script:
            path = Path(script)
            if not path.is_absolute():
                path = self.context.home / path
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                raise ParameterError(f"sh: cannot read script {path}: {e.strerror}") from e
        raise ParameterError("sh: command or script is required")

    @property
    def declarations(self) -> list[Declaration]:
        defaults = self._params.get("variables") or {}
        return [
            Declaration(name, str(defaults[name]) if name in defaults else None)
            for name in ScriptTemplate(self._source()).get_identifiers()
        ]

    def do_compile(self, variables: dict[str, str]) -> None:
        template = ScriptTemplate(self._source())
        undefined = [name for name in template.get_identifiers() if name not in variables]
        if undefined:
            raise ParameterError(f"sh: undefined script variable: {', '.join(undefined)}")
        self._script = template.safe_substitute(variables)

    def script_source(self) -> str:
        if self._script is None:
            self.compile()
        assert self._script is not None
        return self._script

    def explain(self) -> None:
        """Print the command line and check the script's syntax without running it."""
        argv = [self.shell, "-c", self.script_source()]
        typer.echo(shlex.join(argv))
        check = subprocess.run([self.shell, "-n", "-c", self.script_source()], check=False)
        if check.returncode != 0:
            raise ApplicationError(f"sh: syntax check failed with status {check.returncode}")
        typer.echo("syntax ok")

    def run(self, log_locator: LogLocator) -> JobResult:
        sys.stdout.flush()
        sys.stderr.flush()
        proc = subprocess.run([self.shell, "-c", self.script_source()], check=False)
        if proc.returncode == 0:
            return JobResult.for_success()
        # Killed by a signal: report it the way shells do
        status = proc.returncode if proc.returncode > 0 else 128 - proc.returncode
        message = log_locator.slice_last_stderr(self.ERROR_PATTERN) or f"{self.shell} exited with status {status}"
        return JobResult.for_failure(status, message)
