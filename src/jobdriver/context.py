"""Execution context of a jobdriver run."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from jobdriver.config import Configuration

__all__ = ["DEFAULT_ENV", "JobExecutionContext", "job_identity", "resolve_environment", "resolve_home"]

DEFAULT_ENV = "development"
HOME_ENV_VAR = "JOBDRIVER_HOME"
ENVIRONMENT_ENV_VAR = "JOBDRIVER_ENV"


@dataclass(frozen=True)
class JobExecutionContext:
    """Read-only snapshot of one run, created once per process."""

    home: Path
    environment: str
    start_time: datetime
    job_id: str | None = None
    subsystem: str | None = None
    global_variables: Mapping[str, str] = field(default_factory=dict)
    config: Configuration = field(default_factory=Configuration)

    @classmethod
    def for_application(
        cls,
        *,
        home: Path | None,
        job_file: Path | None,
        job_class: str | None,
        environment: str | None,
        global_variables: Mapping[str, str],
        start_time: datetime,
    ) -> JobExecutionContext:
        """Resolve home and environment, load config and name the job."""
        resolved_home = resolve_home(home, job_file)
        resolved_env = resolve_environment(environment)
        subsystem, job_id = job_identity(job_file, job_class)
        return cls(
            home=resolved_home,
            environment=resolved_env,
            start_time=start_time,
            job_id=job_id,
            subsystem=subsystem,
            global_variables=dict(global_variables),
            config=Configuration.load(resolved_home, resolved_env),
        )

    def resolve_global_variables(self) -> dict[str, str]:
        """Merge built-in, config and command line variables (later wins)."""
        variables = {"env": self.environment, "home": str(self.home)}
        variables.update(self.config.variables)
        variables.update(self.global_variables)
        return variables


def resolve_home(home: Path | None, job_file: Path | None = None) -> Path:
    """Pick the application home directory.

    Order: explicit option, JOBDRIVER_HOME, the job file's subsystem parent,
    current directory.
    """
    if home is not None:
        return home
    if env_home := os.environ.get(HOME_ENV_VAR):
        return Path(env_home)
    if job_file is not None:
        return job_file.resolve().parent.parent
    return Path.cwd()


def resolve_environment(environment: str | None) -> str:
    return environment or os.environ.get(ENVIRONMENT_ENV_VAR) or DEFAULT_ENV


def job_identity(job_file: Path | None, job_class: str | None) -> tuple[str | None, str | None]:
    """Return (subsystem, job id) for a job file or a bare job class.

    A job file names its job after the file (up to the first dot) and its
    subsystem after the containing directory.
    """
    if job_file is not None:
        return job_file.resolve().parent.name, job_file.name.split(".", 1)[0]
    return None, job_class
