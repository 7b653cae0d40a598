# modelkeeper/__init__.py
from __future__ import annotations

from importlib import metadata as _metadata

"""
modelkeeper public package surface.

Re-exports the orchestration and configuration symbols at the top level:
    import modelkeeper as mk
    mgr = mk.RegistryManager()
    mgr.pull_model("llama3:8b")
    mk.get_config().paths.base()
"""

# Version
try:
    __version__ = _metadata.version("modelkeeper")
except _metadata.PackageNotFoundError:  # local dev / not installed
    __version__ = "0.0.1-dev"

# Public core API (re-export); core first, it pulls in the cloud and serving clients
from .core import (  # noqa: E402
    AuthError,
    CloudOperationError,
    ConfigError,
    EndpointConnectionError,
    Event,
    EventRecorder,
    LocalStorageError,
    ModelEntry,
    ModelKeeperError,
    NotFoundError,
    ProtocolError,
    RegistryManager,
    TransferError,
    get_config,
    set_home_root,
    temporary_home_root,
)
from .cloud import CloudSyncClient  # noqa: E402
from .serving import ServingClient  # noqa: E402

__all__ = [
    "__version__",
    # core API
    "RegistryManager",
    "ServingClient",
    "CloudSyncClient",
    "ModelEntry",
    "Event",
    "EventRecorder",
    "get_config",
    "set_home_root",
    "temporary_home_root",
    # errors
    "ModelKeeperError",
    "EndpointConnectionError",
    "ProtocolError",
    "TransferError",
    "AuthError",
    "NotFoundError",
    "ConfigError",
    "CloudOperationError",
    "LocalStorageError",
]
