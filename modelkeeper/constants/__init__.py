# __init__.py
"""
Public constants API for modelkeeper.constants.

This module re-exports selected names to provide a clean and stable surface.
"""

# cli_constants
from .cli_constants import DebugMode, ModelSourceOption, SyncDirection

# config_constants
from .config_constants import StoragePaths

# logging_constants
from .logging_constants import (
    LOG_DEFAULT_BACKUPS,
    LOG_DEFAULT_JSON,
    LOG_DEFAULT_LEVEL,
    LOG_DEFAULT_MAX_BYTES,
    LOG_DEFAULT_NAME,
    LOG_DEFAULT_STDERR,
    LOG_ENV_PREFIX,
    LOG_LEVEL_MAP,
    env_log_json,
    env_log_level,  # exported for CLI/apps
    env_log_stderr,
)

# tool_configs
from .tool_configs import CloudSettings, ServingSettings, ToolConfig, get_config, load_config_file, set_config

# tool_constants
from .tool_constants import _ENV_PREFIX as MODELKEEPER_ENV_PREFIX
from .tool_constants import (
    DEFAULT_SERVING_HOST,
    MODEL_SOURCES,
    SOURCE_RESTORED,
    SOURCE_SERVING,
    SOURCE_TRAINED,
    TRANSPORT_INPROCESS,
    TRANSPORT_SUBPROCESS,
    sanitize_model_name,
)

__all__ = [
    # tool_constants
    "MODELKEEPER_ENV_PREFIX",
    "DEFAULT_SERVING_HOST",
    "MODEL_SOURCES",
    "SOURCE_SERVING",
    "SOURCE_TRAINED",
    "SOURCE_RESTORED",
    "TRANSPORT_INPROCESS",
    "TRANSPORT_SUBPROCESS",
    "sanitize_model_name",
    # config_constants
    "StoragePaths",
    # tool_configs
    "ToolConfig",
    "ServingSettings",
    "CloudSettings",
    "get_config",
    "set_config",
    "load_config_file",
    # logging_constants
    "LOG_ENV_PREFIX",
    "LOG_DEFAULT_NAME",
    "LOG_DEFAULT_LEVEL",
    "LOG_DEFAULT_JSON",
    "LOG_DEFAULT_STDERR",
    "LOG_DEFAULT_MAX_BYTES",
    "LOG_DEFAULT_BACKUPS",
    "LOG_LEVEL_MAP",
    "env_log_level",
    "env_log_json",
    "env_log_stderr",
    # cli_constants
    "SyncDirection",
    "ModelSourceOption",
    "DebugMode",
]
