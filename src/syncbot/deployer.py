"""Artifact download and launch.

Sequence (first failure aborts the rest):

1. create ``deploy_path`` (recursively)
2. download every artifact URL in order, writing the body verbatim
   to ``deploy_path/<last path segment>``
3. run ``exec_command`` through the shell with ``cwd=deploy_path``

The child is waited on without a timeout; the launched bot may be
long-running by design.
"""

from __future__ import annotations

import posixpath
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote, urlparse

import structlog

from src.common.constants import STDIO_TAIL_CHARS
from src.common.http import HTTP_ERRORS, http_get_bytes
from src.syncbot.config import SyncConfig


class DeploymentError(Exception):
    """Raised when any deploy step fails (download, write or launch)."""


def tail(text: str, n: int = STDIO_TAIL_CHARS) -> str:
    if len(text) <= n:
        return text
    return text[-n:]


def artifact_filename(url: str) -> str:
    """Local filename for *url*: the final segment of its path."""
    name = posixpath.basename(unquote(urlparse(url).path))
    if name in ("", ".", ".."):
        raise DeploymentError(f"Cannot derive a filename from artifact URL: {url}")
    return name


def _noop(*_args: Any) -> None:
    return None


class ArtifactDeployer:
    """Downloads the configured artifacts and launches the bot command."""

    def __init__(self, config: SyncConfig, emit: Callable[..., Any] = _noop) -> None:
        self._config = config
        self._emit = emit
        self._log = structlog.get_logger("deployer")

    @property
    def deploy_path(self) -> Path:
        return self._config.deploy_path

    def deploy(self, stop: threading.Event | None = None) -> bool:
        """Run the full sequence.

        Returns ``False`` if *stop* was set between steps (nothing further
        is attempted), ``True`` once the command exited with status 0.
        """
        stop = stop or threading.Event()
        self._emit("deploy_start")
        self._log.info(
            "deploy_start",
            deploy_path=str(self.deploy_path),
            artifacts=len(self._config.artifact_urls),
        )

        try:
            self.deploy_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DeploymentError(f"Cannot create deploy directory {self.deploy_path}: {exc}") from exc

        for url in self._config.artifact_urls:
            if stop.is_set():
                return False
            self.fetch_artifact(url)

        self._emit("deploy_files_written")
        if stop.is_set():
            return False

        self.launch()
        self._emit("deploy_success")
        self._log.info("deploy_success", command=self._config.exec_command)
        return True

    def fetch_artifact(self, url: str) -> Path:
        """Download one artifact and write it into the deploy directory."""
        self._emit("download_start", url)
        filename = artifact_filename(url)
        try:
            body = http_get_bytes(url, timeout=self._config.download_timeout)
        except HTTP_ERRORS as exc:
            raise DeploymentError(f"Could not download artifact {url}: {exc}") from exc

        target = self.deploy_path / filename
        try:
            target.write_bytes(body)
        except OSError as exc:
            raise DeploymentError(f"Could not write artifact {target}: {exc}") from exc

        self._log.info("download_complete", url=url, file=filename, size=len(body))
        self._emit("download_complete", filename)
        return target

    def launch(self) -> str:
        """Run the launch command and return its (tail-trimmed) stdout."""
        cmd = self._config.exec_command
        self._emit("exec_start", cmd)
        self._log.info("exec_start", command=cmd, cwd=str(self.deploy_path))
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(self.deploy_path),
                shell=True,
                text=True,
                errors="replace",
                capture_output=True,
            )
        except OSError as exc:
            self._emit("exec_error", exc, "")
            raise DeploymentError(f"Could not launch {cmd!r}: {exc}") from exc

        stdout = tail(proc.stdout or "")
        stderr = tail(proc.stderr or "")
        if proc.returncode != 0:
            err = DeploymentError(f"Command {cmd!r} exited with code {proc.returncode}")
            self._log.warning("exec_error", command=cmd, returncode=proc.returncode, stderr=stderr)
            self._emit("exec_error", err, stderr)
            raise err

        self._emit("exec_success", stdout)
        return stdout
