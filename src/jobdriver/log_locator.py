"""Job log capture: stdout/stderr redirection, remote shipping and cleanup.

A LogLocator owns the local log file of one run and, optionally, a remote
writer that receives the file once the job is done. Without a local path
every operation is a no-op.
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape

from jobdriver import APPLICATION_NAME
from jobdriver.logger import get_logger

if TYPE_CHECKING:
    from jobdriver.remote import RemoteWriter

__all__ = ["LogLocator", "UploadOutcome", "cleanup_local_dirs"]

logger = get_logger(__name__)

console = Console(highlight=False, emoji=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, emoji=False, soft_wrap=True)

STDOUT_FD = 1
STDERR_FD = 2


@dataclass(frozen=True)
class UploadOutcome:
    """Result of a best-effort log upload."""

    uploaded: bool
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class LogLocator:
    """Local log file of a run plus its optional remote destination."""

    def __init__(self, path: Path | str | None, remote_writer: RemoteWriter | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._remote_writer = remote_writer
        self._redirected = False
        self._captured = False
        self._stream: IO[str] | None = None

    @classmethod
    def empty(cls) -> LogLocator:
        """Locator for runs without log capture (disabled or validation only)."""
        return cls(None, None)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def remote_writer(self) -> RemoteWriter | None:
        return self._remote_writer

    @property
    def redirected(self) -> bool:
        return self._redirected

    def url(self) -> str | None:
        if self._remote_writer is None:
            return None
        return self._remote_writer.url()

    def redirect_stdouts[T](self, body: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run body with stdout and stderr captured into the log file.

        The original streams are restored and the log is uploaded whether
        body returns or raises.
        """
        if self._path is None:
            return body(*args, **kwargs)
        with self.capture():
            return body(*args, **kwargs)

    @contextmanager
    def capture(self) -> Iterator[IO[str] | None]:
        """Context manager form of redirect_stdouts.

        Both the file descriptors (so child processes inherit the log) and
        sys.stdout/sys.stderr (so Python-level writes land in it) point at the
        log file inside the block. Yields the open log stream, or None when
        no path is configured.
        """
        if self._path is None:
            yield None
            return
        if self._redirected:
            raise RuntimeError(f"stdout/stderr already redirected to {self._path}")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        _flush_std_streams()
        # Read-write so the captured output can be scanned afterwards; append
        # so fd-level and Python-level writers never overwrite each other.
        stream = open(self._path, "a+", encoding="utf-8", buffering=1, opener=_truncating_opener)
        original_stdout, original_stderr = sys.stdout, sys.stderr

        def restore_sys_streams() -> None:
            sys.stdout, sys.stderr = original_stdout, original_stderr

        with ExitStack() as setup:
            setup.callback(stream.close)
            saved_stdout_fd = os.dup(STDOUT_FD)
            setup.callback(os.close, saved_stdout_fd)
            saved_stderr_fd = os.dup(STDERR_FD)
            setup.callback(os.close, saved_stderr_fd)
            release_handles = setup.pop_all()

        # Releases run in reverse order of registration, and every one of
        # them runs even when an earlier one raises (e.g. a flush on a full
        # log volume).
        with ExitStack() as stack:
            stack.callback(self.upload)
            stack.enter_context(release_handles)
            stack.callback(self._reset_state)
            stack.callback(os.dup2, saved_stderr_fd, STDERR_FD)
            stack.callback(os.dup2, saved_stdout_fd, STDOUT_FD)
            stack.callback(restore_sys_streams)
            stack.callback(stream.flush)

            self._redirected = True
            self._captured = True
            self._stream = stream
            os.dup2(stream.fileno(), STDOUT_FD)
            os.dup2(stream.fileno(), STDERR_FD)
            sys.stdout = sys.stderr = stream
            yield stream

    def _reset_state(self) -> None:
        self._stream = None
        self._redirected = False

    def upload(self) -> UploadOutcome:
        """Ship the log file to the remote writer; never raises.

        On success the local file is removed along with any directories
        that became empty; if the removal fails the file stays and a
        warning goes to stderr. On upload failure a warning goes to stderr
        and the local file stays in place.
        """
        if self._path is None or self._remote_writer is None:
            return UploadOutcome(uploaded=False)
        url = self.url()
        console.print(f"{APPLICATION_NAME}: remote log: {escape(str(url))}")
        outcome = self._transfer(self._path, self._remote_writer)
        if outcome.error is not None:
            err = outcome.error
            err_console.print(
                f"warning: remote log upload failed: {type(err).__name__} {escape(str(err))}: {escape(str(url))}"
            )
            return outcome
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("local log removal failed", path=str(self._path), error=repr(e))
            err_console.print(
                f"warning: could not remove local log: {type(e).__name__} {escape(str(e))}: "
                f"{escape(str(self._path))}"
            )
            return outcome
        cleanup_local_dirs(self._path.parent)
        return outcome

    @staticmethod
    def _transfer(path: Path, writer: RemoteWriter) -> UploadOutcome:
        try:
            writer.upload(path)
        except Exception as e:
            logger.debug("log upload failed", path=str(path), error=repr(e))
            return UploadOutcome(uploaded=False, error=e)
        return UploadOutcome(uploaded=True)

    def slice_last_stderr(self, pattern: str | re.Pattern[str], group: int | str | None = None) -> str | None:
        """Return the last match of pattern in the captured output.

        Every line of the log is scanned and the latest match wins, so the
        most recent error message is reported when a job prints several.

        Args:
            pattern: Regular expression searched in each line
            group: Group to return; defaults to 1 if the pattern has groups,
                else the whole match

        Returns:
            Stripped matched text, or None if nothing was captured, nothing
            matched or the last match is blank
        """
        if not self._captured or self._path is None or not self._path.is_file():
            return None
        regex = re.compile(pattern)
        if group is None:
            group = 1 if regex.groups else 0
        if self._stream is not None:
            self._stream.flush()

        matched: str | None = None
        with self._path.open(encoding="utf-8", errors="replace") as f:
            for line in f:
                m = regex.search(line)
                if m is not None and m.group(group) is not None:
                    matched = m.group(group)
        matched = (matched or "").strip()
        return matched or None


def cleanup_local_dirs(path: Path | str) -> None:
    """Remove path and then its ancestors while they are empty.

    Stops at the filesystem root, at ``.`` or at the first directory that
    cannot be removed. Removal failures are ignored.
    """
    dir_path = Path(path)
    while dir_path.parent != dir_path:
        try:
            dir_path.rmdir()
        except OSError:
            return
        dir_path = dir_path.parent


def _flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        if stream is not None:
            stream.flush()


def _truncating_opener(path: str, flags: int) -> int:
    return os.open(path, flags | os.O_TRUNC, 0o644)
