"""Lifecycle events and the synchronous hook registry."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from jobdriver.logger import get_logger

if TYPE_CHECKING:
    from jobdriver.jobs.base import Job
    from jobdriver.models import JobResult

__all__ = [
    "AfterAllJobsEvent",
    "AfterJobEvent",
    "BeforeAllJobsEvent",
    "BeforeJobEvent",
    "BeforeOptionParsingEvent",
    "Hook",
    "HookRegistry",
    "HookStage",
    "hooks",
]

logger = get_logger(__name__)


class HookStage(StrEnum):
    """Extension points, listed in the order they fire."""

    BEFORE_OPTION_PARSING = "before_option_parsing"
    BEFORE_ALL_JOBS = "before_all_jobs"
    BEFORE_JOB = "before_job"
    AFTER_JOB = "after_job"
    AFTER_ALL_JOBS = "after_all_jobs"


@dataclass(frozen=True)
class BeforeOptionParsingEvent:
    """Fired with the raw command line before global options are parsed."""

    argv: tuple[str, ...]


@dataclass(frozen=True)
class BeforeAllJobsEvent:
    jobnet_id: str
    jobs: tuple[Job, ...]


@dataclass(frozen=True)
class BeforeJobEvent:
    job: Job


@dataclass(frozen=True)
class AfterJobEvent:
    result: JobResult


@dataclass(frozen=True)
class AfterAllJobsEvent:
    succeeded: bool
    jobs: tuple[Job, ...]


type Hook = Callable[[Any], None]


class HookRegistry:
    """Ordered callbacks per lifecycle stage.

    Hooks are trusted extensions: they run synchronously in registration
    order and any exception they raise propagates to the caller.

    before_option_parsing hooks fire with the raw argv before anything is
    parsed, so they also fire for command lines that turn out to be usage
    errors. A usage error suppresses only the four job lifecycle stages
    (before_all_jobs, before_job, after_job, after_all_jobs).
    """

    def __init__(self) -> None:
        self._hooks: dict[HookStage, list[Hook]] = {stage: [] for stage in HookStage}

    def register(self, stage: HookStage | str, hook: Hook) -> Hook:
        """Append a hook to a stage and return it unchanged."""
        self._hooks[HookStage(stage)].append(hook)
        return hook

    def before_option_parsing(self, hook: Hook) -> Hook:
        return self.register(HookStage.BEFORE_OPTION_PARSING, hook)

    def before_all_jobs(self, hook: Hook) -> Hook:
        return self.register(HookStage.BEFORE_ALL_JOBS, hook)

    def before_job(self, hook: Hook) -> Hook:
        return self.register(HookStage.BEFORE_JOB, hook)

    def after_job(self, hook: Hook) -> Hook:
        return self.register(HookStage.AFTER_JOB, hook)

    def after_all_jobs(self, hook: Hook) -> Hook:
        return self.register(HookStage.AFTER_ALL_JOBS, hook)

    def hooks_for(self, stage: HookStage | str) -> list[Hook]:
        return list(self._hooks[HookStage(stage)])

    def run(self, stage: HookStage | str, event: Any) -> None:
        """Invoke every hook of a stage with the event, in order."""
        stage = HookStage(stage)
        stage_hooks = self._hooks[stage]
        logger.debug("running hooks", stage=stage.value, count=len(stage_hooks))
        for hook in stage_hooks:
            hook(event)

    def clear(self) -> None:
        for stage_hooks in self._hooks.values():
            stage_hooks.clear()


# Process-wide registry that extension modules (loaded with --require) add to
hooks = HookRegistry()
