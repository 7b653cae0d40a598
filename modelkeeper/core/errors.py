# core/errors.py
from __future__ import annotations

from typing import Optional


class ModelKeeperError(Exception):
    """Base error for modelkeeper."""


class EndpointConnectionError(ModelKeeperError, ConnectionError):
    """Raised when the serving endpoint or the cloud backend cannot be reached."""


class ProtocolError(ModelKeeperError):
    """Raised when a response body does not have the expected structure. Not retried."""


class EndpointStatusError(ModelKeeperError):
    """Raised when the serving endpoint answers a unary request with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransferError(ModelKeeperError):
    """
    Raised when a streamed transfer ends abnormally.

    Progress records delivered before the failure are not replayed.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(ModelKeeperError):
    """Raised when cloud credentials or the access token are missing or rejected."""


class NotFoundError(ModelKeeperError):
    """Raised when a local path, training id, remote model or remote folder does not exist."""


class ConfigError(ModelKeeperError):
    """Raised when a required configuration value is absent and has no default."""


class CloudOperationError(ModelKeeperError):
    """Raised when a cloud operation fails (nonzero exit, timeout, malformed output)."""


class LocalStorageError(ModelKeeperError):
    """Raised when a transfer cannot read or write a local file. Not retried."""


__all__ = [
    "ModelKeeperError",
    "EndpointConnectionError",
    "ProtocolError",
    "EndpointStatusError",
    "TransferError",
    "AuthError",
    "NotFoundError",
    "ConfigError",
    "CloudOperationError",
    "LocalStorageError",
]
