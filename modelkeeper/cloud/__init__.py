from __future__ import annotations

from .sync_client import CloudSyncClient
from .transport import DriveTransport, InProcessTransport, SubprocessTransport, make_transport

__all__ = ["CloudSyncClient", "DriveTransport", "InProcessTransport", "SubprocessTransport", "make_transport"]
