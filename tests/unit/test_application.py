"""Unit tests for the lifecycle driver."""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import yaml
from freezegun import freeze_time

from jobdriver.application import Application, GlobalOptions
from jobdriver.events import (
    AfterAllJobsEvent,
    AfterJobEvent,
    BeforeAllJobsEvent,
    BeforeJobEvent,
    HookRegistry,
    HookStage,
)
from jobdriver.jobs import ShellJob
from jobdriver.log_path import LogFilePath
from jobdriver.models import ApplicationError, JobResult, OptionError

START_TIME = datetime(2026, 1, 2, 3, 4, 5, 678000)
LIFECYCLE = [HookStage.BEFORE_ALL_JOBS, HookStage.BEFORE_JOB, HookStage.AFTER_JOB, HookStage.AFTER_ALL_JOBS]


@pytest.fixture
def recorded(hook_registry: HookRegistry) -> list[tuple[HookStage, Any]]:
    """Every lifecycle event fired through hook_registry, in order."""
    events: list[tuple[HookStage, Any]] = []
    for stage in LIFECYCLE:
        hook_registry.register(stage, lambda event, stage=stage: events.append((stage, event)))
    return events


@pytest.fixture
def application(hook_registry: HookRegistry) -> Application:
    return Application(hook_registry, start_time=START_TIME)


@pytest.fixture
def options(app_home: Path, tmp_path: Path) -> GlobalOptions:
    return GlobalOptions(home=app_home, log_path_format=LogFilePath(f"{tmp_path}/logs/%{{std}}.log"))


def _job_file(app_home: Path, data: dict[str, Any]) -> Path:
    path = app_home / "etl" / "load_users.job"
    path.parent.mkdir(exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestLifecycle:
    def test_hooks_fire_in_fixed_order_around_job(
        self,
        application: Application,
        options: GlobalOptions,
        recorded: list[tuple[HookStage, Any]],
        tmp_path: Path,
    ) -> None:
        status = application.run(options, ["sh", "-c", "echo hello"])

        assert status == 0
        assert [stage for stage, _ in recorded] == LIFECYCLE
        before_all, before_job, after_job, after_all = (event for _, event in recorded)
        assert isinstance(before_all, BeforeAllJobsEvent)
        assert before_all.jobnet_id == "sh"
        assert isinstance(before_job, BeforeJobEvent)
        assert isinstance(before_job.job, ShellJob)
        assert before_all.jobs == (before_job.job,)
        assert after_job == AfterJobEvent(JobResult.for_success())
        assert isinstance(after_all, AfterAllJobsEvent)
        assert after_all.succeeded

        log = tmp_path / "logs" / "20260102" / "sh" / "20260102_030405678" / "sh.log"
        assert log.read_text() == "hello\n"

    def test_failed_job_status_is_returned_and_after_hooks_fire(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]]
    ) -> None:
        status = application.run(options, ["sh", "-c", "echo 'ERROR: disk full' >&2; exit 3"])

        assert status == 3
        assert [stage for stage, _ in recorded] == LIFECYCLE
        _, _, (_, after_job), (_, after_all) = recorded
        assert after_job.result == JobResult(success=False, status=3, message="disk full")
        assert not after_all.succeeded

    def test_hooks_run_outside_log_capture(
        self, application: Application, options: GlobalOptions, hook_registry: HookRegistry, tmp_path: Path
    ) -> None:
        streams: list[object] = []
        hook_registry.before_job(lambda e: streams.append(sys.stdout))
        hook_registry.after_job(lambda e: streams.append(sys.stdout))
        stdout_before = sys.stdout

        application.run(options, ["sh", "-c", "true"])

        assert streams == [stdout_before, stdout_before]

    def test_hook_error_propagates_and_job_does_not_run(
        self, application: Application, options: GlobalOptions, hook_registry: HookRegistry, tmp_path: Path
    ) -> None:
        marker = tmp_path / "ran"

        def refuse(event: BeforeJobEvent) -> None:
            raise RuntimeError("maintenance window")

        hook_registry.before_job(refuse)

        with pytest.raises(RuntimeError, match="maintenance window"):
            application.run(options, ["sh", "-c", f"touch {marker}"])
        assert not marker.exists()

    def test_job_file_mode(
        self, application: Application, options: GlobalOptions, app_home: Path, recorded: list[tuple[HookStage, Any]]
    ) -> None:
        job_file = _job_file(app_home, {"class": "sh", "command": "echo %{greeting}", "variables": {"greeting": "hi"}})

        status = application.run(replace(options, job_file=job_file), [])

        assert status == 0
        before_all = recorded[0][1]
        assert before_all.jobnet_id == "etl/load_users"

    def test_job_file_options_after_separator(
        self, application: Application, options: GlobalOptions, app_home: Path, tmp_path: Path
    ) -> None:
        job_file = _job_file(app_home, {"class": "sh", "command": "echo %{greeting}"})

        status = application.run(replace(options, job_file=job_file), ["-v", "greeting=hello"])

        assert status == 0
        log = next((tmp_path / "logs").rglob("etl-load_users.log"))
        assert log.read_text() == "hello\n"


class TestUsageErrors:
    """Usage errors are raised before any lifecycle hook or log capture."""

    def _assert_nothing_happened(self, recorded: list[tuple[HookStage, Any]], tmp_path: Path) -> None:
        assert recorded == []
        assert not (tmp_path / "logs").exists()

    def test_job_file_with_class_argument(
        self,
        application: Application,
        options: GlobalOptions,
        app_home: Path,
        recorded: list[tuple[HookStage, Any]],
        tmp_path: Path,
    ) -> None:
        marker = tmp_path / "ran"
        job_file = _job_file(app_home, {"class": "sh", "command": f"touch {marker}"})

        with pytest.raises(OptionError, match="--job and job class argument is exclusive") as exc_info:
            application.run(replace(options, job_file=job_file), ["sh"])

        assert exc_info.value.usage is not None
        assert not marker.exists()
        self._assert_nothing_happened(recorded, tmp_path)

    def test_stray_argument(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]], tmp_path: Path
    ) -> None:
        with pytest.raises(OptionError, match="bad argument: stray"):
            application.run(options, ["sh", "-c", "true", "stray"])
        self._assert_nothing_happened(recorded, tmp_path)

    def test_no_job_class(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]], tmp_path: Path
    ) -> None:
        with pytest.raises(OptionError, match="no job class given"):
            application.run(options, [])
        self._assert_nothing_happened(recorded, tmp_path)

    def test_unknown_job_class(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]], tmp_path: Path
    ) -> None:
        with pytest.raises(OptionError, match="no such job class: nosuch"):
            application.run(options, ["nosuch"])
        self._assert_nothing_happened(recorded, tmp_path)

    def test_missing_job_file(
        self, application: Application, options: GlobalOptions, tmp_path: Path, recorded: list[tuple[HookStage, Any]]
    ) -> None:
        with pytest.raises(OptionError, match="no such job file"):
            application.run(replace(options, job_file=tmp_path / "etl" / "nope.job"), [])
        self._assert_nothing_happened(recorded, tmp_path)

    def test_unknown_job_option(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]], tmp_path: Path
    ) -> None:
        with pytest.raises(OptionError, match="--bogus"):
            application.run(options, ["sh", "--bogus"])
        self._assert_nothing_happened(recorded, tmp_path)

    def test_unloadable_required_module(self, application: Application, options: GlobalOptions) -> None:
        with pytest.raises(OptionError, match="cannot load module no_such_jobdriver_extension"):
            application.run(replace(options, requires=("no_such_jobdriver_extension",)), ["sh", "-c", "true"])


class TestApplicationErrors:
    def test_undefined_script_variable(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]]
    ) -> None:
        with pytest.raises(ApplicationError, match="undefined script variable: table"):
            application.run(options, ["sh", "-c", "echo %{table}"])
        assert recorded == []

    def test_unknown_remote_store(
        self, application: Application, options: GlobalOptions, recorded: list[tuple[HookStage, Any]]
    ) -> None:
        with pytest.raises(ApplicationError, match="no such remote store: archive"):
            application.run(replace(options, remote_store="archive"), ["sh", "-c", "true"])
        assert recorded == []


class TestListingModes:
    """Listing and validation modes print and return 0 without running the job."""

    @pytest.fixture(autouse=True)
    def _no_lifecycle(self, recorded: list[tuple[HookStage, Any]], tmp_path: Path) -> Any:
        yield
        assert recorded == []
        assert not (tmp_path / "logs").exists()

    def test_list_global_variables(
        self,
        application: Application,
        options: GlobalOptions,
        app_home: Path,
        write_config: Any,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        write_config({"variables": {"db": "dwh"}})

        status = application.run(replace(options, list_global_variables=True, global_variables={"date": "x"}), [])

        assert status == 0
        assert capsys.readouterr().out.splitlines() == [
            "env='development'",
            f"home='{app_home}'",
            "db='dwh'",
            "date='x'",
        ]

    def test_list_variables(
        self, application: Application, options: GlobalOptions, capsys: pytest.CaptureFixture[str]
    ) -> None:
        status = application.run(replace(options, list_variables=True), ["sh", "-c", "true", "-v", "table=users"])

        assert status == 0
        assert "table='users'" in capsys.readouterr().out.splitlines()

    def test_list_declarations(
        self, application: Application, options: GlobalOptions, capsys: pytest.CaptureFixture[str]
    ) -> None:
        status = application.run(
            replace(options, list_declarations=True), ["sh", "-c", "echo %{env} %{table}", "-v", "table=users"]
        )

        assert status == 0
        assert capsys.readouterr().out.splitlines() == ["env", "table\t= 'users'"]

    def test_dry_run_prints_script(
        self, application: Application, options: GlobalOptions, capsys: pytest.CaptureFixture[str], tmp_path: Path
    ) -> None:
        marker = tmp_path / "ran"

        status = application.run(replace(options, dry_run=True), ["sh", "-c", f"touch {marker} # %{{env}}"])

        assert status == 0
        assert capsys.readouterr().out == f"touch {marker} # development\n"
        assert not marker.exists()

    def test_explain(
        self, application: Application, options: GlobalOptions, capsys: pytest.CaptureFixture[str]
    ) -> None:
        status = application.run(replace(options, explain=True), ["sh", "-c", "echo ok"])

        assert status == 0
        assert "syntax ok" in capsys.readouterr().out


class TestRequire:
    def test_required_module_registers_hooks(
        self, options: GlobalOptions, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        extension = tmp_path / "ext" / "jobdriver_test_ext.py"
        extension.parent.mkdir()
        extension.write_text(
            "from jobdriver.events import hooks\n"
            "CALLS = []\n"
            "hooks.after_all_jobs(lambda event: CALLS.append(event.succeeded))\n"
        )
        monkeypatch.syspath_prepend(str(extension.parent))
        monkeypatch.delitem(sys.modules, "jobdriver_test_ext", raising=False)
        from jobdriver.events import hooks

        try:
            status = Application(start_time=START_TIME).run(
                replace(options, requires=("jobdriver_test_ext",)), ["sh", "-c", "true"]
            )
            assert status == 0
            assert sys.modules["jobdriver_test_ext"].CALLS == [True]
        finally:
            hooks.clear()
            sys.modules.pop("jobdriver_test_ext", None)


class TestStartTime:
    @freeze_time("2026-03-04 05:06:07.891")
    def test_defaults_to_now(self, hook_registry: HookRegistry) -> None:
        assert Application(hook_registry).start_time == datetime(2026, 3, 4, 5, 6, 7, 891000)

    @freeze_time("2026-03-04 05:06:07.891")
    def test_drives_log_path(self, hook_registry: HookRegistry, options: GlobalOptions, tmp_path: Path) -> None:
        Application(hook_registry).run(options, ["sh", "-c", "echo at"])

        assert (tmp_path / "logs" / "20260304" / "sh" / "20260304_050607891" / "sh.log").read_text() == "at\n"
