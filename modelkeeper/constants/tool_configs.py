# tool_configs.py
import json
import os
import platform
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from .config_constants import StoragePaths
from .logging_constants import env_log_level
from .tool_constants import (
    _ENV_PREFIX,
    DEFAULT_AUTH_TIMEOUT,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_OPERATION_TIMEOUT,
    DEFAULT_SERVING_HOST,
    DEFAULT_SERVING_TIMEOUT,
    TRANSPORT_INPROCESS,
    TRANSPORTS,
)


def _siteconfig_home() -> Optional[str]:
    """Home directory recorded at install time, if any."""
    try:
        from modelkeeper._siteconfig import HOME_DIR  # type: ignore

        return HOME_DIR
    except Exception:
        return None


def _default_home_root() -> Path:
    """
    Determine the default home root honoring MODELKEEPER_HOME if set
    and following OS-specific conventions otherwise.
    """
    env = os.getenv(f"{_ENV_PREFIX}HOME")
    if env:
        return Path(env).expanduser()

    installed = _siteconfig_home()
    if installed:
        return Path(installed).expanduser()

    system = platform.system().lower()
    if system == "darwin":
        return Path.home() / "Library" / "Application Support"
    if system == "windows":
        return Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    return Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_transport() -> str:
    value = os.getenv(f"{_ENV_PREFIX}CLOUD_TRANSPORT", TRANSPORT_INPROCESS).strip().lower()
    return value if value in TRANSPORTS else TRANSPORT_INPROCESS


@dataclass
class ServingSettings:
    """
    Connection settings for the model-serving HTTP endpoint.
    """

    host: str = field(default_factory=lambda: os.getenv("OLLAMA_HOST", DEFAULT_SERVING_HOST))
    timeout: float = field(default_factory=lambda: _env_float("SERVING_TIMEOUT", DEFAULT_SERVING_TIMEOUT))
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT


@dataclass
class CloudSettings:
    """
    Retry, timeout and transport settings for the cloud sync client.

    ``credentials_path`` / ``token_path`` default to the files under the home layout
    when left as None.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    auth_timeout: float = DEFAULT_AUTH_TIMEOUT
    transport: str = field(default_factory=_default_transport)
    python_executable: str = field(default_factory=lambda: os.getenv(f"{_ENV_PREFIX}PYTHON", sys.executable))
    credentials_path: Optional[Path] = None
    token_path: Optional[Path] = None


@dataclass
class ToolConfig:
    """
    Global configuration container for modelkeeper runtime.
    """

    paths: StoragePaths = field(default_factory=lambda: StoragePaths(_default_home_root()))
    serving: ServingSettings = field(default_factory=ServingSettings)
    cloud: CloudSettings = field(default_factory=CloudSettings)
    log_level: int = field(default_factory=env_log_level)


def _overlay(section: Any, values: dict[str, Any]) -> Any:
    """Return a copy of a settings dataclass with known keys replaced."""
    known = {f.name: f for f in fields(section)}
    updates: dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            continue
        if key in ("credentials_path", "token_path") and value is not None:
            value = Path(value).expanduser()
        updates[key] = value
    return replace(section, **updates) if updates else section


def load_config_file(cfg: ToolConfig, path: Optional[Path] = None) -> ToolConfig:
    """
    Overlay the JSON configuration file (sections ``serving`` and ``cloud``) onto `cfg`.

    A missing file leaves `cfg` untouched. Unknown keys are ignored.
    """
    p = Path(path) if path is not None else cfg.paths.config_file()
    if not p.exists():
        return cfg
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid configuration file {p}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration file {p}: expected a JSON object")

    return replace(
        cfg,
        serving=_overlay(cfg.serving, data.get("serving") or {}),
        cloud=_overlay(cfg.cloud, data.get("cloud") or {}),
    )


# Global singleton for convenience (simple and testable)
_GLOBAL: ToolConfig | None = None


def get_config() -> ToolConfig:
    """
    Return the global ToolConfig, creating it on first use.
    Ensures storage directories exist.
    """
    global _GLOBAL
    if _GLOBAL is None:
        cfg = ToolConfig()
        _GLOBAL = load_config_file(cfg)
        _GLOBAL.paths.ensure_all()
    return _GLOBAL


def set_config(cfg: ToolConfig) -> None:
    """
    Replace the global ToolConfig with a custom instance.
    Ensures storage directories exist.
    """
    global _GLOBAL
    _GLOBAL = cfg
    _GLOBAL.paths.ensure_all()
