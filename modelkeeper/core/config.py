# core/config.py
from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from threading import RLock

from modelkeeper.constants.config_constants import StoragePaths
from modelkeeper.constants.tool_configs import CloudSettings, ServingSettings, ToolConfig
from modelkeeper.constants.tool_configs import get_config as _get_config
from modelkeeper.constants.tool_configs import set_config as _set_config
from modelkeeper.logging import get_logger

_LOG = get_logger(__name__)
_LOCK = RLock()


def get_config() -> ToolConfig:
    """
    Return the global ToolConfig managed by modelkeeper.constants.tool_configs.

    Components never call this at operation time; it only supplies the default
    when a RegistryManager or CLI command is constructed without an explicit config.
    """
    with _LOCK:
        return _get_config()


def set_home_root(new_root: Path | str) -> None:
    """
    Point the global configuration at a different home directory while keeping
    the serving and cloud settings.

    Parameters
    ----------
    new_root : Path or str
        New root path. Will be expanded and resolved.
    """
    root = Path(new_root).expanduser().resolve()
    with _LOCK:
        old = _get_config()
        _set_config(replace(old, paths=StoragePaths(root)))
        _LOG.info("Home root set to: %s", root)


@contextmanager
def temporary_home_root(temp_root: Path | str) -> Generator[None, None, None]:
    """
    Temporarily override the home root (useful for tests or isolated runs).

    Example
    -------
    >>> from pathlib import Path
    >>> with temporary_home_root(Path('./.tmp_home')):
    ...     # managers built here keep their manifest under ./.tmp_home
    ...     pass
    """
    prev_root = get_config().paths.home_root
    set_home_root(temp_root)
    try:
        yield
    finally:
        set_home_root(prev_root)


__all__ = [
    "get_config",
    "set_home_root",
    "temporary_home_root",
    "ToolConfig",
    "StoragePaths",
    "ServingSettings",
    "CloudSettings",
]
