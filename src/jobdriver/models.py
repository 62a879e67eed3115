"""Core types, results and errors for jobdriver."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "ApplicationError",
    "ConfigError",
    "JobDriverError",
    "JobFailure",
    "JobRef",
    "JobResult",
    "OptionError",
    "ParameterError",
]

EXIT_SUCCESS = 0
EXIT_FAILURE = 1  # Job ran and failed (e.g. non-zero command status)


@dataclass(frozen=True)
class JobRef:
    """Two-part job identifier plus the run-attempt location token."""

    subsystem: str | None
    name: str
    location: str = "-"

    def __str__(self) -> str:
        if self.subsystem:
            return f"{self.subsystem}/{self.name}"
        return self.name


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job execution; status is the process exit code."""

    success: bool
    status: int
    message: str | None = None

    @classmethod
    def for_success(cls) -> JobResult:
        return cls(success=True, status=EXIT_SUCCESS)

    @classmethod
    def for_failure(cls, status: int = EXIT_FAILURE, message: str | None = None) -> JobResult:
        if status == EXIT_SUCCESS:
            raise ValueError("failed job result must have a non-zero status")
        return cls(success=False, status=status, message=message)


@dataclass(frozen=True)
class ConfigError:
    """Single validation problem found in a config or job file."""

    path: str  # Dotted path to the invalid value
    message: str


class JobDriverError(Exception):
    """Base class for all expected jobdriver errors."""


class OptionError(JobDriverError):
    """Malformed or missing command line input.

    Reported with a usage message; never triggers lifecycle hooks.
    """

    def __init__(self, message: str, usage: str | None = None) -> None:
        super().__init__(message)
        self.usage = usage


class ApplicationError(JobDriverError):
    """Expected, user-facing failure after the execution context exists."""


class ParameterError(ApplicationError):
    """Bad job parameter, job file or template."""


class JobFailure(JobDriverError):
    """Raised by a job body to end the run with a failed result."""

    def __init__(self, message: str, status: int = EXIT_FAILURE) -> None:
        super().__init__(message)
        self.status = status
