"""Remote destinations for shipping job log files."""

from __future__ import annotations

import asyncio
import posixpath
import shutil
from pathlib import Path
from typing import Protocol

import asyncssh

from jobdriver.config import RemoteStoreConfig
from jobdriver.logger import get_logger

__all__ = [
    "DEFAULT_UPLOAD_TIMEOUT",
    "DirectoryRemoteWriter",
    "RemoteWriter",
    "SftpRemoteWriter",
    "create_remote_writer",
]

logger = get_logger(__name__)

DEFAULT_UPLOAD_TIMEOUT = 300.0  # Seconds


class RemoteWriter(Protocol):
    """Capability to persist one local file at a fixed remote location."""

    def upload(self, local_path: Path) -> None:
        """Copy the file to the remote location.

        Raises:
            Exception: Any failure; callers treat uploads as best-effort
        """
        ...

    def url(self) -> str:
        """Location of the uploaded file."""
        ...


class DirectoryRemoteWriter:
    """Copies logs into a mounted directory (NFS, shared volume, ...)."""

    def __init__(self, root: Path, key: str) -> None:
        self._root = root
        self._key = key.lstrip("/")

    @property
    def destination(self) -> Path:
        return self._root / self._key

    def upload(self, local_path: Path) -> None:
        dest = self.destination
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, dest)
        logger.debug("log copied", source=str(local_path), destination=str(dest))

    def url(self) -> str:
        return self.destination.absolute().as_uri()


class SftpRemoteWriter:
    """Uploads logs to an SSH host over SFTP.

    Respects ~/.ssh/config and the user's keys automatically via asyncssh.
    The whole transfer is bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        host: str,
        key: str,
        port: int | None = None,
        username: str | None = None,
        prefix: str = "",
        known_hosts: str | None = None,
        timeout: float = DEFAULT_UPLOAD_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._known_hosts = known_hosts
        self._timeout = timeout
        self._remote_path = posixpath.join(prefix, key.lstrip("/")) if prefix else key

    @property
    def remote_path(self) -> str:
        return self._remote_path

    def upload(self, local_path: Path) -> None:
        asyncio.run(asyncio.wait_for(self._upload(local_path), timeout=self._timeout))

    async def _upload(self, local_path: Path) -> None:
        async with asyncssh.connect(self._host, **self._connect_options()) as conn:
            async with conn.start_sftp_client() as sftp:
                parent = posixpath.dirname(self._remote_path)
                if parent:
                    await sftp.makedirs(parent, exist_ok=True)
                await sftp.put(str(local_path), self._remote_path)
        logger.debug("log uploaded", host=self._host, path=self._remote_path)

    def _connect_options(self) -> dict[str, object]:
        options: dict[str, object] = {}
        if self._port is not None:
            options["port"] = self._port
        if self._username is not None:
            options["username"] = self._username
        if self._known_hosts is not None:
            options["known_hosts"] = self._known_hosts
        return options

    def url(self) -> str:
        userinfo = f"{self._username}@" if self._username else ""
        port = f":{self._port}" if self._port else ""
        path = self._remote_path if self._remote_path.startswith("/") else f"/{self._remote_path}"
        return f"sftp://{userinfo}{self._host}{port}{path}"


def create_remote_writer(store: RemoteStoreConfig, key: str) -> RemoteWriter:
    """Build the writer for a configured store and object key."""
    options = store.options
    if store.type == "directory":
        return DirectoryRemoteWriter(Path(options["root"]), key)
    if store.type == "sftp":
        return SftpRemoteWriter(
            host=options["host"],
            key=key,
            port=options.get("port"),
            username=options.get("username"),
            prefix=options.get("prefix", ""),
            known_hosts=options.get("known_hosts"),
            timeout=float(options.get("timeout", DEFAULT_UPLOAD_TIMEOUT)),
        )
    raise ValueError(f"Unsupported remote store type: {store.type}")
