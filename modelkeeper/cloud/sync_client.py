# cloud/sync_client.py
"""
Retried access to the Google Drive backup area.

The client owns the token file and the retry policy. The actual Drive calls go
through a :class:`~modelkeeper.cloud.transport.DriveTransport`. It never
touches the manifest and never logs; progress and retries surface as events.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from modelkeeper.constants.config_constants import StoragePaths
from modelkeeper.constants.tool_configs import CloudSettings
from modelkeeper.core.errors import AuthError, CloudOperationError, EndpointConnectionError, NotFoundError, TransferError
from modelkeeper.core.events import EventEmitter, EventHook
from modelkeeper.misc.utils_lib import UtilsLib

from .transport import DriveTransport, make_transport

RETRYABLE_ERRORS = (EndpointConnectionError, CloudOperationError, TransferError)
SYNC_DIRECTIONS = ("upload", "download", "both")


class CloudSyncClient:
    """
    Parameters
    ----------
    settings : CloudSettings
        Retry budget, per-operation timeout and transport selection.
    paths : StoragePaths
        Home layout; supplies the token, credentials and models locations.
    transport : DriveTransport, optional
        Overrides the transport named by ``settings.transport``.
    on_event : callable, optional
        Receives ``authenticated``, ``auth-revoked``, ``upload-progress``,
        ``download-progress``, ``sync-status``, ``sync-complete``, ``retry``
        and ``error`` events.
    sleep : callable, optional
        Used between attempts; injectable so tests do not wait.
    """

    def __init__(
        self,
        settings: CloudSettings,
        paths: StoragePaths,
        *,
        transport: Optional[DriveTransport] = None,
        on_event: Optional[EventHook] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.paths = paths
        self._transport = transport if transport is not None else make_transport(settings)
        self._events = EventEmitter(on_event)
        self._sleep = sleep

    @property
    def token_path(self) -> Path:
        return Path(self.settings.token_path) if self.settings.token_path else self.paths.token_file()

    @property
    def credentials_path(self) -> Path:
        return Path(self.settings.credentials_path) if self.settings.credentials_path else self.paths.credentials_file()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _call(
        self,
        operation: str,
        params: dict[str, Any],
        *,
        timeout: Optional[float] = None,
        progress: Optional[Callable[[dict[str, Any]], None]] = None,
    ) -> Any:
        def _announce(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            self._events.emit("retry", attempt=state.attempt_number, operation=operation, error=str(error))

        retrying = Retrying(
            stop=stop_after_attempt(max(1, int(self.settings.max_attempts))),
            wait=wait_exponential(multiplier=self.settings.backoff_base),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=_announce,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(
            self._transport.execute,
            operation,
            params,
            timeout=self.settings.operation_timeout if timeout is None else timeout,
            progress=progress,
        )

    def _require_auth(self) -> None:
        if not self.is_authenticated():
            raise AuthError("Not authenticated with Google Drive. Run setup first.")

    def _write_token(self, token: dict[str, Any]) -> Path:
        path = UtilsLib.write_json_atomic(self.token_path, token)
        try:
            os.chmod(path, 0o600)
        except OSError:
            # owner-only modes are not supported everywhere (e.g. some Windows volumes)
            pass
        return path

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        return self.token_path.exists()

    def authenticate(self, credentials_path: Optional[Path] = None) -> dict[str, Any]:
        """
        Exchange the credentials file for a token and store it owner-only.

        Raises
        ------
        AuthError
            If the credentials file is missing or the backend refuses it.
        """
        cred = Path(credentials_path) if credentials_path else self.credentials_path
        if not cred.exists():
            raise AuthError(f"Credentials file not found: {cred}")
        token = self._call("authenticate", {"credentials_path": str(cred)}, timeout=self.settings.auth_timeout)
        if not isinstance(token, dict) or not token:
            raise CloudOperationError("Authentication returned no token")
        self._write_token(token)
        self._events.emit("authenticated", token_path=str(self.token_path))
        return token

    def revoke_auth(self) -> bool:
        """Delete the stored token. Returns False if there was none."""
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        self._events.emit("auth-revoked", token_path=str(self.token_path))
        return True

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def upload_directory(self, local_path: Path, parent_folder_id: str, compress: bool = False) -> dict[str, Any]:
        root = Path(local_path)
        if not root.exists():
            raise NotFoundError(f"Directory not found: {root}")
        if not root.is_dir():
            raise NotFoundError(f"Not a directory: {root}")
        self._require_auth()
        return self._call(
            "upload_directory",
            {
                "token_path": str(self.token_path),
                "local_path": str(root),
                "parent_id": parent_folder_id,
                "compress": compress,
            },
            progress=lambda record: self._events.emit("upload-progress", **record),
        )

    def download_models(self, parent_folder_id: str) -> dict[str, Any]:
        """Mirror the remote folder into the local models directory."""
        self._require_auth()
        target = self.paths.models()
        target.mkdir(parents=True, exist_ok=True)
        return self._call(
            "download_folder",
            {"token_path": str(self.token_path), "folder_id": parent_folder_id, "output_path": str(target)},
            progress=lambda record: self._events.emit("download-progress", **record),
        )

    def sync_models(self, folder_id: str, direction: str = "both", compress: bool = False) -> dict[str, Any]:
        """
        Upload and/or download the models directory.

        On failure an ``error`` event carries the results of the phases that
        already completed, then the error is re-raised.
        """
        if direction not in SYNC_DIRECTIONS:
            raise ValueError(f"Unknown sync direction '{direction}'. Expected one of {SYNC_DIRECTIONS}")

        results: dict[str, Any] = {"uploaded": None, "downloaded": None}
        try:
            if direction in ("upload", "both"):
                self._events.emit("sync-status", stage="uploading")
                results["uploaded"] = self.upload_directory(self.paths.models(), folder_id, compress=compress)
            if direction in ("download", "both"):
                self._events.emit("sync-status", stage="downloading")
                results["downloaded"] = self.download_models(folder_id)
        except Exception as e:
            self._events.emit("error", type="sync_failed", error=str(e), partial=dict(results))
            raise

        self._events.emit("sync-complete", **results)
        return results

    # ------------------------------------------------------------------
    # Folder management
    # ------------------------------------------------------------------

    def list_folder_contents(self, folder_id: str) -> list[dict[str, Any]]:
        self._require_auth()
        return self._call("list_folder", {"token_path": str(self.token_path), "folder_id": folder_id})

    def create_folder(self, name: str, parent_id: str = "root") -> dict[str, Any]:
        """Create a folder and return ``{"folder_id", "name"}``."""
        self._require_auth()
        return self._call(
            "create_folder", {"token_path": str(self.token_path), "name": name, "parent_id": parent_id}
        )

    def get_storage_info(self) -> dict[str, Any]:
        """Drive quota in bytes: ``limit`` (None when unlimited), ``usage``, ``usage_in_drive``, ``usage_in_trash``."""
        self._require_auth()
        return self._call("storage_quota", {"token_path": str(self.token_path)})


__all__ = ["CloudSyncClient", "RETRYABLE_ERRORS", "SYNC_DIRECTIONS"]
