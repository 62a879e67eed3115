"""Log file path templates and the LogLocator builder."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from jobdriver.log_locator import LogLocator
from jobdriver.logger import get_logger
from jobdriver.models import JobRef, ParameterError
from jobdriver.remote import create_remote_writer

if TYPE_CHECKING:
    from jobdriver.config import RemoteStoreConfig
    from jobdriver.context import JobExecutionContext

__all__ = [
    "DEFAULT_REMOTE_KEY",
    "LOG_DIR_ENV_VAR",
    "LOG_PATH_ENV_VAR",
    "LogFilePath",
    "LogLocatorBuilder",
]

logger = get_logger(__name__)

LOG_PATH_ENV_VAR = "JOBDRIVER_LOG_PATH"
LOG_DIR_ENV_VAR = "JOBDRIVER_LOG_DIR"
DEFAULT_REMOTE_KEY = "%{std}.log"

_PLACEHOLDER_RE = re.compile(r"%\{(\w+)\}")


class LogFilePath:
    """Template for log file paths and remote keys.

    Supported placeholders: ``%{jobnet_start_date}``, ``%{jobnet_start_time}``,
    ``%{job_start_date}``, ``%{job_start_time}``, ``%{jobnet}``,
    ``%{subsystem}``, ``%{job}``, ``%{jobid}`` and ``%{std}``, the standard
    layout ``<jobnet date>/<jobnet>/<jobnet time>/<subsystem>-<job>`` (just
    ``<job>`` for jobs without a subsystem).
    """

    def __init__(self, template: str) -> None:
        self._template = template

    @classmethod
    def default(cls) -> LogFilePath | None:
        """Template from JOBDRIVER_LOG_PATH or JOBDRIVER_LOG_DIR, if set."""
        if path := os.environ.get(LOG_PATH_ENV_VAR):
            return cls(path)
        if log_dir := os.environ.get(LOG_DIR_ENV_VAR):
            return cls.for_dir(log_dir)
        return None

    @classmethod
    def for_dir(cls, log_dir: str | Path) -> LogFilePath:
        return cls(f"{log_dir}/%{{std}}.log")

    @property
    def template(self) -> str:
        return self._template

    def __repr__(self) -> str:
        return f"LogFilePath({self._template!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LogFilePath) and other._template == self._template

    def __hash__(self) -> int:
        return hash(self._template)

    def format(
        self,
        *,
        job_ref: JobRef,
        jobnet_id: str,
        job_start_time: datetime,
        jobnet_start_time: datetime,
    ) -> str:
        """Expand the template for one job run.

        Raises:
            ParameterError: If the template has an unknown placeholder
        """
        params = {
            "jobnet_start_date": jobnet_start_time.strftime("%Y%m%d"),
            "jobnet_start_time": _timestamp(jobnet_start_time),
            "job_start_date": job_start_time.strftime("%Y%m%d"),
            "job_start_time": _timestamp(job_start_time),
            "jobnet": jobnet_id.replace("/", "::"),
            "subsystem": job_ref.subsystem or "-",
            "job": job_ref.name,
            "jobid": str(job_ref),
        }
        leaf = f"{job_ref.subsystem}-{job_ref.name}" if job_ref.subsystem else job_ref.name
        params["std"] = f"{params['jobnet_start_date']}/{params['jobnet']}/{params['jobnet_start_time']}/{leaf}"

        def replace(m: re.Match[str]) -> str:
            name = m.group(1)
            try:
                return params[name]
            except KeyError:
                raise ParameterError(f"unknown log path placeholder: %{{{name}}} in {self._template}") from None

        return _PLACEHOLDER_RE.sub(replace, self._template)


@dataclass(frozen=True)
class LogLocatorBuilder:
    """Binds path and remote key templates to a job run."""

    path_format: LogFilePath | None
    remote_store: RemoteStoreConfig | None = None
    remote_key_format: LogFilePath | None = None

    @classmethod
    def for_options(
        cls,
        ctx: JobExecutionContext,
        path_format: LogFilePath | None,
        remote_store_name: str | None,
        remote_key_format: LogFilePath | None,
    ) -> LogLocatorBuilder:
        """Resolve the remote store name against the environment's config.

        A remote store without a local path template captures into the
        system temporary directory, since the file is removed after upload.
        """
        if remote_store_name is None:
            return cls(path_format)
        store = ctx.config.get_remote_store(remote_store_name)
        if path_format is None:
            path_format = LogFilePath.for_dir(Path(tempfile.gettempdir()) / "jobdriver")
        return cls(path_format, store, remote_key_format or LogFilePath(DEFAULT_REMOTE_KEY))

    def build(
        self,
        *,
        job_ref: JobRef,
        jobnet_id: str,
        job_start_time: datetime,
        jobnet_start_time: datetime,
    ) -> LogLocator:
        if self.path_format is None:
            return LogLocator.empty()
        params = {
            "job_ref": job_ref,
            "jobnet_id": jobnet_id,
            "job_start_time": job_start_time,
            "jobnet_start_time": jobnet_start_time,
        }
        path = Path(self.path_format.format(**params))
        writer = None
        if self.remote_store is not None and self.remote_key_format is not None:
            writer = create_remote_writer(self.remote_store, self.remote_key_format.format(**params))
        logger.debug("log locator built", path=str(path), remote=writer.url() if writer else None)
        return LogLocator(path, writer)


def _timestamp(t: datetime) -> str:
    return t.strftime("%Y%m%d_%H%M%S") + f"{t.microsecond // 1000:03d}"
