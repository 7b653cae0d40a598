# cloud/transport.py
from __future__ import annotations

import json
import os
import secrets
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from modelkeeper.constants.tool_configs import CloudSettings
from modelkeeper.constants.tool_constants import TRANSPORT_INPROCESS, TRANSPORT_SUBPROCESS, TRANSPORTS
from modelkeeper.core.errors import (
    AuthError,
    CloudOperationError,
    EndpointConnectionError,
    LocalStorageError,
    ModelKeeperError,
    NotFoundError,
)

from . import drive_api

FileProgress = Callable[[dict[str, Any]], None]

_KIND_TO_ERROR: dict[str, type[ModelKeeperError]] = {
    "auth": AuthError,
    "not_found": NotFoundError,
    "connection": EndpointConnectionError,
    "failed": CloudOperationError,
    "local": LocalStorageError,
}


def error_for_kind(kind: str, message: str) -> ModelKeeperError:
    """Map a Drive failure kind onto the package exception hierarchy."""
    return _KIND_TO_ERROR.get(kind, CloudOperationError)(message)


class DriveTransport(Protocol):
    """Runs one named Drive operation and returns its JSON-compatible result."""

    def execute(
        self,
        operation: str,
        params: dict[str, Any],
        *,
        timeout: float,
        progress: Optional[FileProgress] = None,
    ) -> Any: ...


class InProcessTransport:
    """Calls :mod:`modelkeeper.cloud.drive_api` in the current interpreter."""

    def execute(
        self,
        operation: str,
        params: dict[str, Any],
        *,
        timeout: float,
        progress: Optional[FileProgress] = None,
    ) -> Any:
        try:
            fn = drive_api.OPERATIONS[operation]
        except KeyError:
            raise ValueError(f"Unknown Drive operation '{operation}'") from None
        try:
            return fn(**params, timeout=timeout, progress=progress)
        except drive_api.DriveCallError as e:
            raise error_for_kind(e.kind, str(e)) from e


class SubprocessTransport:
    """
    Runs ``drive_api.py`` as a script under another interpreter.

    The request is written to a temp file ``gdrive_<ms>_<random>.json`` that is
    removed whatever the outcome. The child must print exactly one JSON line on
    stdout. A nonzero exit, a timeout or unparseable output raise
    :class:`CloudOperationError`, refined to :class:`AuthError`,
    :class:`NotFoundError` or :class:`LocalStorageError` when the child reports
    that kind on stderr.

    Per-file progress is replayed from the result once the child has exited.
    """

    def __init__(
        self,
        python_executable: str,
        script_path: Optional[Path] = None,
        tmp_dir: Optional[Path] = None,
    ) -> None:
        self.python_executable = python_executable
        self.script_path = Path(script_path) if script_path else Path(drive_api.__file__)
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir())

    def _write_request(self, operation: str, params: dict[str, Any], timeout: float) -> Path:
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        path = self.tmp_dir / f"gdrive_{int(time.time() * 1000)}_{secrets.token_hex(6)}.json"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"operation": operation, "params": params, "timeout": timeout}, f)
        return path

    @staticmethod
    def _failure(operation: str, proc: subprocess.CompletedProcess) -> ModelKeeperError:
        stderr = (proc.stderr or "").strip()
        last = stderr.splitlines()[-1] if stderr else ""
        try:
            report = json.loads(last)
        except ValueError:
            report = None
        if isinstance(report, dict) and "error" in report:
            kind = report.get("kind", "failed")
            if kind in ("auth", "not_found", "local"):
                return error_for_kind(kind, str(report["error"]))
            return CloudOperationError(f"Drive operation '{operation}' failed: {report['error']}")
        detail = stderr or f"exit code {proc.returncode}"
        return CloudOperationError(f"Drive operation '{operation}' failed: {detail}")

    @staticmethod
    def _parse_output(operation: str, stdout: str) -> Any:
        lines = [line for line in (stdout or "").splitlines() if line.strip()]
        if len(lines) != 1:
            raise CloudOperationError(
                f"Drive operation '{operation}' produced {len(lines)} output lines, expected exactly one"
            )
        try:
            return json.loads(lines[0])
        except ValueError as e:
            raise CloudOperationError(f"Drive operation '{operation}' produced invalid JSON: {e}") from e

    def execute(
        self,
        operation: str,
        params: dict[str, Any],
        *,
        timeout: float,
        progress: Optional[FileProgress] = None,
    ) -> Any:
        request_path = self._write_request(operation, params, timeout)
        try:
            proc = subprocess.run(
                [self.python_executable, str(self.script_path), str(request_path)],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CloudOperationError(f"Drive operation '{operation}' timed out after {timeout:g}s") from e
        except OSError as e:
            raise CloudOperationError(f"Cannot run {self.python_executable}: {e}") from e
        finally:
            request_path.unlink(missing_ok=True)

        if proc.returncode != 0:
            raise self._failure(operation, proc)
        result = self._parse_output(operation, proc.stdout)
        if progress is not None and isinstance(result, dict):
            for record in result.get("files") or []:
                progress(record)
        return result


def make_transport(settings: CloudSettings) -> DriveTransport:
    """Build the transport named by ``settings.transport``."""
    if settings.transport == TRANSPORT_SUBPROCESS:
        return SubprocessTransport(settings.python_executable)
    if settings.transport == TRANSPORT_INPROCESS:
        return InProcessTransport()
    raise ValueError(f"Unknown cloud transport '{settings.transport}'. Expected one of {TRANSPORTS}")


__all__ = [
    "DriveTransport",
    "InProcessTransport",
    "SubprocessTransport",
    "make_transport",
    "error_for_kind",
]
