# core/registry_manager.py
"""
Model lifecycle orchestration.

:class:`RegistryManager` owns the manifest and composes the serving client and
the cloud sync client. Every public operation either returns a structured
result or emits one failure event, logs once, and re-raises the original error.
Nothing is retried or rolled back at this layer.

The manifest is read once at construction and rewritten whole after each
mutation. Two processes mutating the same home concurrently resolve as last
write wins.
"""

from __future__ import annotations

import shutil
from collections import Counter
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from modelkeeper.cloud.sync_client import CloudSyncClient
from modelkeeper.constants.tool_configs import ToolConfig
from modelkeeper.constants.tool_constants import (
    BACKUP_SUBFOLDERS,
    LINEAGE_FILENAME,
    MODEL_METADATA_FILENAME,
    MODEL_SOURCES,
    ROOT_BACKUP_FOLDER,
    SOURCE_RESTORED,
    SOURCE_SERVING,
    SOURCE_TRAINED,
    TRAINING_DATA_STEM,
)
from modelkeeper.core.errors import AuthError, ConfigError, EndpointConnectionError, NotFoundError
from modelkeeper.core.events import EventEmitter, EventHook
from modelkeeper.logging import add_context, get_logger
from modelkeeper.misc.utils_lib import UtilsLib
from modelkeeper.serving.serving_client import ServingClient

from .config import get_config
from .manifest import CloudState, ManifestStore, ModelEntry, RegistryManifest

logger = get_logger("modelkeeper.registry")
add_context(logger, component="registry")


class RegistryManager:
    """
    Pull, train, export, delete, back up and restore models.

    Parameters
    ----------
    config : ToolConfig, optional
        Paths and client settings. Defaults to the global configuration.
    serving : ServingClient, optional
        Injected serving client; built from ``config.serving`` otherwise.
    cloud : CloudSyncClient, optional
        Injected cloud client; built from ``config.cloud`` otherwise.
    on_event : callable, optional
        Receives every lifecycle :class:`~modelkeeper.core.events.Event`, including
        the ones emitted by the clients this manager builds.

    Examples
    --------
    >>> from modelkeeper.core.events import EventRecorder
    >>> rec = EventRecorder()
    >>> mgr = RegistryManager(on_event=rec)            # doctest: +SKIP
    >>> mgr.pull_model("llama3:8b")                    # doctest: +SKIP
    {'status': 'pulled', 'model': 'llama3:8b', 'success': True}
    """

    def __init__(
        self,
        config: Optional[ToolConfig] = None,
        *,
        serving: Optional[ServingClient] = None,
        cloud: Optional[CloudSyncClient] = None,
        on_event: Optional[EventHook] = None,
    ) -> None:
        self.config = config or get_config()
        self.paths = self.config.paths
        self.paths.ensure_all()

        self._events = EventEmitter(on_event)
        self.serving = serving or ServingClient(self.config.serving, self.paths.models())
        self.cloud = cloud or CloudSyncClient(self.config.cloud, self.paths, on_event=on_event)

        self.store = ManifestStore(self.paths.manifest_file())
        self.manifest: RegistryManifest = self.store.load()
        logger.debug("Registry opened at %s (%d entries)", self.paths.base(), len(self.manifest.entries))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _reported(self, error_type: str) -> Generator[None, None, None]:
        """Emit ``error {type, error}`` and log once for any failure inside the block."""
        try:
            yield
        except Exception as e:
            self._events.emit("error", type=error_type, error=str(e))
            logger.error("%s: %s", error_type, e)
            raise

    def _save(self) -> None:
        self.store.save(self.manifest)

    def _resolve_folder(self, folder_id: Optional[str]) -> str:
        folder = folder_id or self.manifest.cloud.backup_folder_id
        if not folder:
            raise ConfigError("No Google Drive folder configured. Pass a folder id or run setup first.")
        return folder

    def _require_cloud_auth(self) -> None:
        if not self.cloud.is_authenticated():
            raise AuthError("Not authenticated with Google Drive. Run setup first.")

    def _scan_local_models(self) -> list[str]:
        """
        Model ids for every directory under the models root.

        The id comes from the directory's ``model.json`` when present; otherwise
        the directory name is used as is.
        """
        root = self.paths.models()
        if not root.is_dir():
            return []
        ids: list[str] = []
        for child in sorted(root.iterdir()):
            if not child.is_dir():
                continue
            model_id = child.name
            meta = child / MODEL_METADATA_FILENAME
            if meta.is_file():
                try:
                    data = UtilsLib.read_json(meta)
                    if isinstance(data, dict) and data.get("id"):
                        model_id = str(data["id"])
                except (OSError, ValueError) as e:
                    logger.warning("Ignoring unreadable %s: %s", meta, e)
            ids.append(model_id)
        return ids

    def _local_storage(self) -> dict[str, int]:
        sizes = {
            "models": UtilsLib.dir_size(self.paths.models()),
            "training": UtilsLib.dir_size(self.paths.training()),
        }
        return {"total": sum(sizes.values()), **sizes}

    # ------------------------------------------------------------------
    # Serving-origin models
    # ------------------------------------------------------------------

    def pull_model(self, name: str) -> dict[str, Any]:
        """
        Pull `name` from the serving endpoint and record it in the manifest.

        Skipped (no transfer, no manifest write) when the model is already known
        locally and ``overwrite_models`` is off.

        Raises
        ------
        ValueError
            For an empty name.
        EndpointConnectionError
            If the endpoint fails its health check.
        TransferError, ProtocolError, NotFoundError
            As raised by the serving client.
        """
        name = (name or "").strip()
        self._events.emit("pull-start", model=name)
        try:
            if not name:
                raise ValueError("Model name must be a non-empty string")
            if not self.serving.check_health():
                raise EndpointConnectionError(f"Serving endpoint {self.serving.host} is not accessible")

            known = name in self.manifest.entries or self.serving.model_exists(name)
            if known and not self.manifest.settings.overwrite_models:
                self._events.emit("pull-skipped", model=name, reason="already_exists")
                logger.info("Pull of '%s' skipped: already present", name)
                return {"status": "skipped", "model": name, "reason": "already_exists"}

            self.serving.pull_model(name, on_progress=lambda p: self._events.emit("pull-progress", model=name, progress=p))
            info = self.serving.show_model(name)

            now = UtilsLib.utc_now()
            model_dir = self.paths.model_dir(name)
            model_dir.mkdir(parents=True, exist_ok=True)
            UtilsLib.write_json_atomic(model_dir / MODEL_METADATA_FILENAME, {"id": name, "pulled_at": now, "info": info})

            self.manifest.entries[name] = ModelEntry(
                id=name, source=SOURCE_SERVING, created_at=now, synced=False, info=info
            )
            self._save()
        except Exception as e:
            self._events.emit("pull-error", model=name, error=str(e))
            logger.error("Pull of '%s' failed: %s", name, e)
            raise

        self._events.emit("pull-complete", model=name)
        logger.info("Pulled '%s'", name)
        return {"status": "pulled", "model": name, "success": True}

    def list_models(self) -> dict[str, list[dict[str, Any]]]:
        """
        Endpoint listing and manifest entries side by side.

        The two views are not reconciled: an entry missing from the endpoint is
        still listed under ``local``.
        """
        with self._reported("list_models"):
            served = self.serving.list_models()
        return {
            "remote": [
                {"name": m.name, "size": m.size, "modified": m.modified_at, "source": SOURCE_SERVING} for m in served
            ],
            "local": [
                {"name": model_id, **entry.to_dict(), "path": str(self.paths.model_dir(model_id))}
                for model_id, entry in self.manifest.entries.items()
            ],
        }

    def get_model_stats(self) -> dict[str, Any]:
        entries = self.manifest.entries.values()
        by_source = Counter(e.source for e in entries)
        return {
            "total": len(self.manifest.entries),
            "synced": sum(1 for e in entries if e.synced),
            "by_source": {source: by_source.get(source, 0) for source in MODEL_SOURCES},
        }

    # ------------------------------------------------------------------
    # Training lineage
    # ------------------------------------------------------------------

    def train_model(self, base_model: str, training_data_path: Path | str, output_name: str) -> dict[str, Any]:
        """
        Stage training data for `output_name` and record its lineage.

        No weights are produced here: the run directory holds the copied data and
        a ``lineage.json`` for the endpoint or an external trainer to pick up.

        Returns
        -------
        dict
            ``{"success": True, "training_id", "output_name", "path"}``.
        """
        self._events.emit("training-start", model=base_model, output=output_name)
        with self._reported("training_failed"):
            if not output_name or not str(output_name).strip():
                raise ValueError("Output name must be a non-empty string")
            data = Path(training_data_path).expanduser()
            if not data.exists():
                raise NotFoundError(f"Training data not found: {data}")
            if not self.serving.check_health():
                raise EndpointConnectionError(f"Serving endpoint {self.serving.host} is required for training")

            training_id = UtilsLib.create_training_id(output_name, self.paths.training())
            run_dir = self.paths.training_dir(training_id)
            run_dir.mkdir(parents=True)
            if data.is_dir():
                shutil.copytree(data, run_dir / TRAINING_DATA_STEM)
            else:
                shutil.copy2(data, run_dir / f"{TRAINING_DATA_STEM}{data.suffix or '.txt'}")

            now = UtilsLib.utc_now()
            UtilsLib.write_json_atomic(
                run_dir / LINEAGE_FILENAME,
                {
                    "training_id": training_id,
                    "base_model": base_model,
                    "output_name": output_name,
                    "training_data_path": str(data.resolve()),
                    "created_at": now,
                },
            )
            self.manifest.entries[output_name] = ModelEntry(
                id=output_name,
                source=SOURCE_TRAINED,
                base_model=base_model,
                training_id=training_id,
                training_data_path=str(data),
                created_at=now,
                trained_at=now,
                synced=False,
            )
            self._save()

        self._events.emit("training-complete", model=base_model, output=output_name, training_id=training_id)
        logger.info("Staged training run %s (%s -> %s)", training_id, base_model, output_name)
        return {"success": True, "training_id": training_id, "output_name": output_name, "path": str(run_dir)}

    def export_model(self, training_id: str, output_path: Path | str) -> dict[str, Any]:
        """Copy the files (not subdirectories) of a training run into `output_path`."""
        with self._reported("export_failed"):
            if training_id in (".", "..") or "/" in training_id or "\\" in training_id:
                raise ValueError(f"Invalid training id: {training_id!r}")
            run_dir = self.paths.training_dir(training_id)
            if not training_id or not run_dir.is_dir():
                raise NotFoundError(f"Training not found: {training_id}")
            out = Path(output_path).expanduser()
            copied = UtilsLib.copy_files(run_dir, out)

        self._events.emit("export-complete", training_id=training_id, output_path=str(out))
        return {"success": True, "path": str(out), "files": [p.name for p in copied]}

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_model(self, name: str, delete_local: bool = True, delete_remote: bool = False) -> dict[str, Any]:
        """
        Remove a model locally, on the endpoint, both or neither.

        Deleting only the endpoint copy keeps the manifest entry and stamps its
        ``remote_deleted_at``. Training run directories are never removed here.
        """
        with self._reported("delete_failed"):
            if not name or not name.strip():
                raise ValueError("Model name must be a non-empty string")
            if delete_local:
                UtilsLib.delete_folder(self.paths.model_dir(name), missing_ok=True, restrict_to=self.paths.models())
                self.manifest.entries.pop(name, None)
                self._save()
            if delete_remote:
                self.serving.delete_model(name)
                entry = self.manifest.entries.get(name)
                if entry is not None:
                    entry.remote_deleted_at = UtilsLib.utc_now()
                    self._save()

        self._events.emit("model-deleted", model=name, local=delete_local, remote=delete_remote)
        logger.info("Deleted '%s' (local=%s, remote=%s)", name, delete_local, delete_remote)
        return {"success": True, "model": name, "deleted_local": delete_local, "deleted_remote": delete_remote}

    # ------------------------------------------------------------------
    # Cloud backup
    # ------------------------------------------------------------------

    def setup_google_drive(
        self, credentials_path: Optional[Path | str] = None, backup_folder_id: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Authenticate and, without an explicit folder id, create the backup tree
        ``modelkeeper-models/{serving-models,trained-models,backups}``.
        """
        self._events.emit("gdrive-setup-start")
        subfolders: dict[str, str] = {}
        with self._reported("gdrive_setup_failed"):
            self.cloud.authenticate(Path(credentials_path).expanduser() if credentials_path else None)
            folder = backup_folder_id
            if not folder:
                folder = self.cloud.create_folder(ROOT_BACKUP_FOLDER, "root")["folder_id"]
                for sub in BACKUP_SUBFOLDERS:
                    subfolders[sub] = self.cloud.create_folder(sub, folder)["folder_id"]

            self.manifest.cloud = CloudState(authenticated=True, backup_folder_id=folder, setup_at=UtilsLib.utc_now())
            self._save()

        self._events.emit("gdrive-setup-complete", folder_id=folder)
        logger.info("Google Drive backups go to folder %s", folder)
        return {"success": True, "folder_id": folder, "subfolders": subfolders}

    def sync_to_google_drive(self, folder_id: Optional[str] = None) -> dict[str, Any]:
        """
        Upload the models directory and mark every entry synced.

        All entries share one ``synced_at`` stamp even though the transfer is
        per file; a partially failed upload raises and leaves the flags as they were.
        """
        self._events.emit("sync-start", direction="upload")
        with self._reported("sync_to_gdrive"):
            self._require_cloud_auth()
            folder = self._resolve_folder(folder_id)
            result = self.cloud.upload_directory(self.paths.models(), folder)

            stamp = UtilsLib.utc_now()
            for entry in self.manifest.entries.values():
                entry.synced = True
                entry.synced_at = stamp
            self._save()

        self._events.emit("sync-complete", direction="upload", result=result)
        logger.info("Synced %d models to folder %s", len(self.manifest.entries), folder)
        return result

    def restore_from_google_drive(self, folder_id: Optional[str] = None) -> dict[str, Any]:
        """
        Download the backup folder and adopt every untracked model directory as
        a ``restored`` entry.
        """
        self._events.emit("sync-start", direction="download")
        restored: list[str] = []
        with self._reported("restore_from_gdrive"):
            self._require_cloud_auth()
            folder = self._resolve_folder(folder_id)
            result = self.cloud.download_models(folder)

            now = UtilsLib.utc_now()
            for model_id in self._scan_local_models():
                if model_id in self.manifest.entries:
                    continue
                self.manifest.entries[model_id] = ModelEntry(
                    id=model_id, source=SOURCE_RESTORED, restored_at=now, synced=True
                )
                restored.append(model_id)
            self._save()

        self._events.emit("sync-complete", direction="download", result=result, restored=restored)
        logger.info("Restored from folder %s: %d new entries", folder, len(restored))
        return {**result, "restored": restored}

    def revoke_google_drive(self) -> bool:
        """Forget the stored token; the backup folder id is kept for a later setup."""
        with self._reported("gdrive_revoke_failed"):
            removed = self.cloud.revoke_auth()
            self.manifest.cloud.authenticated = False
            self._save()
        return removed

    # ------------------------------------------------------------------
    # Storage and settings
    # ------------------------------------------------------------------

    def get_storage_info(self) -> dict[str, Any]:
        """
        Local sizes in bytes, plus the Drive quota when authenticated.

        A failing quota query degrades to local-only info with a ``warning`` event.
        """
        info: dict[str, Any] = {"local": self._local_storage()}
        if not self.cloud.is_authenticated():
            return info
        try:
            info["google_drive"] = self.cloud.get_storage_info()
        except Exception as e:
            message = f"Failed to get Google Drive info: {e}"
            self._events.emit("warning", message=message)
            logger.warning(message)
        return info

    def update_settings(self, **kwargs: Any) -> dict[str, Any]:
        """
        Update manifest settings. ``overwrite_models`` is typed; other keys are
        stored as given.
        """
        settings = self.manifest.settings
        for key, value in kwargs.items():
            if key == "overwrite_models":
                settings.overwrite_models = bool(value)
            else:
                settings.extra[key] = value
        self._save()
        return settings.to_dict()


__all__ = ["RegistryManager"]
