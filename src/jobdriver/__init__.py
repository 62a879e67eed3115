"""jobdriver: run a single batch job under lifecycle hooks with captured logs."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from jobdriver.events import HookRegistry, HookStage, hooks

try:
    __version__ = version("jobdriver")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

APPLICATION_NAME = "jobdriver"

__all__ = ["APPLICATION_NAME", "HookRegistry", "HookStage", "__version__", "hooks"]
