"""Job creation from job files and bare job class ids."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from jobdriver.context import job_identity
from jobdriver.jobs.base import Job, get_job_class
from jobdriver.models import ParameterError

if TYPE_CHECKING:
    from jobdriver.context import JobExecutionContext

__all__ = ["instantiate", "load_job_file"]


def load_job_file(path: Path, ctx: JobExecutionContext) -> Job:
    """Load a YAML job file.

    The ``class`` key selects the job class; every other key is a job
    parameter validated against the class's PARAMS_SCHEMA.

    Raises:
        ParameterError: If the file is missing, malformed or invalid
    """
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ParameterError(f"no such job file: {path}") from None
    except yaml.YAMLError as e:
        raise ParameterError(f"{path}: bad job file: {e}") from e

    if not isinstance(data, dict) or "class" not in data:
        raise ParameterError(f"{path}: job file must be a mapping with a 'class' key")

    job_class = get_job_class(str(data["class"]))
    params = {key: value for key, value in data.items() if key != "class"}
    errors = job_class.validate_params(params)
    if errors:
        details = "; ".join(f"{e.path}: {e.message}" for e in errors)
        raise ParameterError(f"{path}: {details}")

    subsystem, job_id = job_identity(path, None)
    assert job_id is not None
    return job_class(job_id, subsystem, ctx, params)


def instantiate(class_id: str, ctx: JobExecutionContext) -> Job:
    """Create a job of the given class with no parameters."""
    job_class = get_job_class(class_id)
    return job_class(class_id, None, ctx, {})
