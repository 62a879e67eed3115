"""Shared test fixtures for jobdriver tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import yaml

from jobdriver.config import Configuration
from jobdriver.context import JobExecutionContext
from jobdriver.events import HookRegistry
from jobdriver.logger import LogLevel, configure_logging

START_TIME = datetime(2026, 1, 2, 3, 4, 5, 678000)

JOBDRIVER_ENV_VARS = (
    "JOBDRIVER_HOME",
    "JOBDRIVER_ENV",
    "JOBDRIVER_LOG_PATH",
    "JOBDRIVER_LOG_DIR",
    "JOBDRIVER_DEBUG",
)


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging() -> None:
    """Keep jobdriver's own diagnostics at WARNING so they stay out of test output."""
    configure_logging(LogLevel.WARNING)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop JOBDRIVER_* variables inherited from the developer's shell."""
    for name in JOBDRIVER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def hook_registry() -> HookRegistry:
    """Fresh hook registry, independent of the process-wide one."""
    return HookRegistry()


@pytest.fixture
def app_home(tmp_path: Path) -> Path:
    """Application home with an empty development environment."""
    home = tmp_path / "home"
    (home / "config" / "development").mkdir(parents=True)
    return home


@pytest.fixture
def write_config(app_home: Path) -> Callable[[dict[str, Any]], Path]:
    """Write the development environment's jobdriver.yaml."""

    def _write(data: dict[str, Any], environment: str = "development") -> Path:
        path = Configuration.path_for(app_home, environment)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


@pytest.fixture
def make_context(app_home: Path) -> Callable[..., JobExecutionContext]:
    """Build a JobExecutionContext rooted at app_home."""

    def _make(**overrides: Any) -> JobExecutionContext:
        values: dict[str, Any] = {
            "home": app_home,
            "environment": "development",
            "start_time": START_TIME,
        }
        values.update(overrides)
        return JobExecutionContext(**values)

    return _make
