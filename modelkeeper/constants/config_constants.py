# config_constants.py
import threading
from dataclasses import dataclass
from pathlib import Path

from .tool_constants import (
    CONFIG_FILENAME,
    CREDENTIALS_FILENAME,
    MANIFEST_FILENAME,
    TOKEN_FILENAME,
    sanitize_model_name,
)

# Thread-safe creation of storage directories
_LOCK = threading.RLock()


@dataclass
class StoragePaths:
    """
    Helper to manage the modelkeeper home layout and ensure directories exist.
    """
    home_root: Path
    tool_name: str = "modelkeeper"

    def base(self) -> Path:
        return self.home_root / self.tool_name

    # Subtrees
    def models(self) -> Path:
        return self.base() / "models"

    def model_dir(self, name: str) -> Path:
        """
        Return the local artifact directory for a model identifier.
        """
        return self.models() / sanitize_model_name(name)

    def training(self) -> Path:
        return self.base() / "training"

    def training_dir(self, training_id: str) -> Path:
        return self.training() / training_id

    def tmp(self) -> Path:
        return self.base() / "tmp"

    def logs(self) -> Path:
        return self.base() / "logs"

    # Files
    def manifest_file(self) -> Path:
        return self.base() / MANIFEST_FILENAME

    def config_file(self) -> Path:
        return self.base() / CONFIG_FILENAME

    def credentials_file(self) -> Path:
        return self.base() / CREDENTIALS_FILENAME

    def token_file(self) -> Path:
        return self.base() / TOKEN_FILENAME

    def ensure_all(self) -> None:
        """
        Create the common directories if they do not exist.
        """
        with _LOCK:
            for p in [self.base(), self.models(), self.training(), self.tmp(), self.logs()]:
                p.mkdir(parents=True, exist_ok=True)
