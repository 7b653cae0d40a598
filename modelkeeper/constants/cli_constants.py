# cli_constants.py
from enum import Enum


class SyncDirection(str, Enum):
    """Transfer directions accepted by the sync commands."""
    upload = "upload"
    download = "download"
    both = "both"


class ModelSourceOption(str, Enum):
    """Provenance filter for model listings."""
    serving = "serving-origin"
    trained = "trained"
    restored = "restored"


class DebugMode(str, Enum):
    """Textual logging levels accepted by the CLI."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
