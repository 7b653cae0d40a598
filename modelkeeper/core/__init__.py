# core/__init__.py
from __future__ import annotations

from importlib import metadata as _metadata

from .config import get_config, set_home_root, temporary_home_root
from .errors import (
    AuthError,
    CloudOperationError,
    ConfigError,
    EndpointConnectionError,
    EndpointStatusError,
    LocalStorageError,
    ModelKeeperError,
    NotFoundError,
    ProtocolError,
    TransferError,
)
from .events import Event, EventEmitter, EventHook, EventRecorder
from .manifest import CloudState, ManifestSettings, ManifestStore, ModelEntry, RegistryManifest
from .registry_manager import RegistryManager

__all__ = [
    # version
    "__version__",
    # config
    "get_config",
    "set_home_root",
    "temporary_home_root",
    # manifest
    "ModelEntry",
    "ManifestSettings",
    "CloudState",
    "RegistryManifest",
    "ManifestStore",
    # orchestration
    "RegistryManager",
    "Event",
    "EventHook",
    "EventEmitter",
    "EventRecorder",
    # errors
    "ModelKeeperError",
    "EndpointConnectionError",
    "EndpointStatusError",
    "ProtocolError",
    "TransferError",
    "AuthError",
    "NotFoundError",
    "ConfigError",
    "CloudOperationError",
    "LocalStorageError",
]

try:  # prefer package metadata; fallback during local dev without installed dist
    __version__ = _metadata.version("modelkeeper")
except _metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0-dev"
