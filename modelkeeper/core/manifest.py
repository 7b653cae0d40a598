# core/manifest.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from modelkeeper.constants.tool_constants import MODEL_SOURCES
from modelkeeper.logging import get_logger
from modelkeeper.misc.utils_lib import UtilsLib
from modelkeeper.types import ModelSource

logger = get_logger(__name__)


def _pop_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.pop(key, None)
    return None if value is None else str(value)


@dataclass
class ModelEntry:
    """
    Lifecycle metadata for one model identifier.

    Parameters
    ----------
    id : str
        Unique key, optionally colon-qualified (``llama3:8b``).
    source : {"serving-origin", "trained", "restored"}
        Provenance of the entry.
    base_model : Optional[str]
        Parent model, set for trained entries.
    training_id : Optional[str]
        Training run identifier; names the artifact directory under ``training/``.
    training_data_path : Optional[str]
        Where the staged training data originally came from.
    created_at, trained_at, synced_at, restored_at : Optional[str]
        ISO-8601 UTC timestamps, each set at its lifecycle transition. Only
        ``synced_at`` is rewritten (on every successful upload).
    remote_deleted_at : Optional[str]
        Set when the serving copy was deleted but the entry was kept.
    synced : bool
        True iff the artifacts are believed to match the last uploaded copy.
    info : dict
        Metadata blob returned by the serving endpoint, stored verbatim.
    extra : dict
        Keys found on disk that this version does not know; written back unchanged.
    """

    id: str
    source: ModelSource
    base_model: Optional[str] = None
    training_id: Optional[str] = None
    training_data_path: Optional[str] = None
    created_at: Optional[str] = None
    trained_at: Optional[str] = None
    synced_at: Optional[str] = None
    restored_at: Optional[str] = None
    remote_deleted_at: Optional[str] = None
    synced: bool = False
    info: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Model entry id must be a non-empty string")
        if self.source not in MODEL_SOURCES:
            raise ValueError(f"Unknown model source '{self.source}'. Expected one of {MODEL_SOURCES}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize without the id (the id is the mapping key on disk). None fields are omitted."""
        out: dict[str, Any] = dict(self.extra)
        out["source"] = self.source
        for key in (
            "base_model",
            "training_id",
            "training_data_path",
            "created_at",
            "trained_at",
            "synced_at",
            "restored_at",
            "remote_deleted_at",
        ):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        out["synced"] = self.synced
        if self.info:
            out["info"] = self.info
        return out

    @classmethod
    def from_dict(cls, model_id: str, data: dict[str, Any]) -> "ModelEntry":
        raw = dict(data)
        info = raw.pop("info", None)
        return cls(
            id=model_id,
            source=raw.pop("source"),
            base_model=_pop_str(raw, "base_model"),
            training_id=_pop_str(raw, "training_id"),
            training_data_path=_pop_str(raw, "training_data_path"),
            created_at=_pop_str(raw, "created_at"),
            trained_at=_pop_str(raw, "trained_at"),
            synced_at=_pop_str(raw, "synced_at"),
            restored_at=_pop_str(raw, "restored_at"),
            remote_deleted_at=_pop_str(raw, "remote_deleted_at"),
            synced=bool(raw.pop("synced", False)),
            info=info if isinstance(info, dict) else {},
            extra=raw,
        )


@dataclass
class ManifestSettings:
    """User-level flags stored alongside the entries."""

    overwrite_models: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "overwrite_models": self.overwrite_models}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestSettings":
        raw = dict(data)
        return cls(overwrite_models=bool(raw.pop("overwrite_models", False)), extra=raw)


@dataclass
class CloudState:
    """Cloud backup bookkeeping: whether setup ran and which folder receives backups."""

    authenticated: bool = False
    backup_folder_id: Optional[str] = None
    setup_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"authenticated": self.authenticated}
        if self.backup_folder_id is not None:
            out["backup_folder_id"] = self.backup_folder_id
        if self.setup_at is not None:
            out["setup_at"] = self.setup_at
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CloudState":
        return cls(
            authenticated=bool(data.get("authenticated", False)),
            backup_folder_id=data.get("backup_folder_id"),
            setup_at=data.get("setup_at"),
        )


@dataclass
class RegistryManifest:
    """The persisted aggregate: entries by id, settings and cloud state."""

    entries: dict[str, ModelEntry] = field(default_factory=dict)
    settings: ManifestSettings = field(default_factory=ManifestSettings)
    cloud: CloudState = field(default_factory=CloudState)

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": {model_id: entry.to_dict() for model_id, entry in self.entries.items()},
            "settings": self.settings.to_dict(),
            "cloud": self.cloud.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryManifest":
        if not isinstance(data, dict):
            raise ValueError("Manifest root must be a JSON object")
        models = data.get("models") or {}
        if not isinstance(models, dict):
            raise ValueError("Manifest 'models' must be a JSON object")
        return cls(
            entries={model_id: ModelEntry.from_dict(model_id, raw) for model_id, raw in models.items()},
            settings=ManifestSettings.from_dict(data.get("settings") or {}),
            cloud=CloudState.from_dict(data.get("cloud") or {}),
        )


class ManifestStore:
    """
    Reads and writes the manifest file as a whole.

    Every save rewrites the full document through an atomic rename. There is no
    cross-process lock: two processes saving concurrently resolve as last write wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> RegistryManifest:
        """
        Read the manifest, or return an empty one if the file does not exist.

        An unreadable or malformed file is moved aside to ``<name>.corrupt-<stamp>``
        so the next save does not destroy it.
        """
        if not self.path.exists():
            return RegistryManifest()
        try:
            return RegistryManifest.from_dict(UtilsLib.read_json(self.path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            stamp = UtilsLib.utc_now().replace(":", "").replace("-", "")
            backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
            try:
                self.path.replace(backup)
            except OSError:
                backup = self.path
            logger.warning("Failed to load manifest %s (%s); starting empty, original kept at %s", self.path, e, backup)
            return RegistryManifest()

    def save(self, manifest: RegistryManifest) -> None:
        UtilsLib.write_json_atomic(self.path, manifest.to_dict())
        logger.debug("Manifest saved: %s (%d entries)", self.path, len(manifest.entries))


__all__ = ["ModelEntry", "ManifestSettings", "CloudState", "RegistryManifest", "ManifestStore"]
