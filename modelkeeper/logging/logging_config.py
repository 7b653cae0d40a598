from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Optional

try:
    from appdirs import user_log_dir
except Exception:  # pragma: no cover
    user_log_dir = None  # type: ignore

from modelkeeper.constants.logging_constants import (
    LOG_DEFAULT_BACKUPS,
    LOG_DEFAULT_JSON,
    LOG_DEFAULT_LEVEL,
    LOG_DEFAULT_MAX_BYTES,
    LOG_DEFAULT_NAME,
    LOG_DEFAULT_STDERR,
    LOG_ENV_PREFIX,
    LOG_LEVEL_MAP,
    env_log_json,
    env_log_level,
    env_log_stderr,
)

# Logger names that already carry our handlers.
_CONFIGURED_ROOTS: set[str] = set()

# LogRecord attributes that are never copied into JSON payloads.
_RESERVED_ATTRS = frozenset(
    {
        "args", "asctime", "created", "exc_info", "exc_text", "filename",
        "funcName", "levelname", "levelno", "lineno", "module", "msecs",
        "msg", "name", "pathname", "process", "processName", "relativeCreated",
        "stack_info", "thread", "threadName", "taskName",
    }
)

# Third-party loggers that are chatty at INFO/DEBUG.
_NOISY_LOGGERS = (
    "urllib3",
    "requests",
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google_auth_httplib2",
    "google_auth_oauthlib",
)


def _env_value(name: str) -> Optional[str]:
    return os.getenv(f"{LOG_ENV_PREFIX}{name}")


def _env_int(name: str, default: int) -> int:
    raw = _env_value(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _to_level(level: int | str | None) -> int:
    if level is None:
        return env_log_level()
    if isinstance(level, str):
        return LOG_LEVEL_MAP.get(level.upper(), LOG_DEFAULT_LEVEL)
    return int(level)


def _resolve_log_file(explicit_path: Optional[Path] = None, default_name: str = "modelkeeper.log") -> Optional[Path]:
    """
    Pick the log file location.

    Order: explicit argument, ``MODELKEEPER_LOG_FILE``, ``<home>/modelkeeper/logs``
    from the active ToolConfig, appdirs ``user_log_dir``. Returns None when no
    directory can be created.
    """
    candidates: list[Path] = []
    if explicit_path is not None:
        candidates.append(Path(explicit_path).expanduser())
    env_path = _env_value("FILE")
    if env_path:
        candidates.append(Path(env_path).expanduser())

    if not candidates:
        try:
            # Imported lazily: tool_configs must stay importable without logging.
            from modelkeeper.constants.tool_configs import get_config

            candidates.append(get_config().paths.logs() / default_name)
        except Exception:
            if user_log_dir is not None:
                candidates.append(Path(user_log_dir("modelkeeper", "ModelKeeper")) / default_name)

    for path in candidates:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return path
        except OSError:
            continue
    return None


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; extras added via `extra=` or filters are kept."""

    def __init__(self, *, use_utc: bool = False) -> None:
        super().__init__()
        self._use_utc = use_utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # type: ignore[override]
        if self._use_utc:
            return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created))
        return super().formatTime(record, datefmt=datefmt or "%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in payload:
                continue
            try:
                json.dumps(value)
                payload[key] = value
            except (TypeError, ValueError):
                payload[key] = str(value)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)  # type: ignore[arg-type]
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=False)


def _formatter(fmt: str, datefmt: Optional[str], *, use_json: bool, use_utc: bool) -> logging.Formatter:
    if use_json:
        return _JsonFormatter(use_utc=use_utc)
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)
    if use_utc:
        formatter.converter = time.gmtime
    return formatter


def setup_logger(
    name: str = LOG_DEFAULT_NAME,
    level: int | str | None = None,
    *,
    with_console: bool | None = None,
    with_file: bool = True,
    file_path: Optional[Path] = None,
    fmt_console: str = "[%(levelname)s] %(message)s",
    fmt_file: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt_file: Optional[str] = "%Y-%m-%d %H:%M:%S",
    use_json: Optional[bool] = None,
    use_utc: Optional[bool] = None,
    max_bytes: Optional[int] = None,
    backups: Optional[int] = None,
    propagate: bool = False,
    force_reconfigure: bool = False,
    extra_filters: Optional[Iterable[logging.Filter]] = None,
) -> logging.Logger:
    """
    Configure and return the package root logger.

    Calling it again for the same `name` only updates levels unless
    `force_reconfigure=True`, so handlers are never duplicated.

    Parameters
    ----------
    name : str
        Logger name (package root).
    level : int | str | None
        Logging level. None reads ``MODELKEEPER_LOG_LEVEL``.
    with_console : bool | None
        Add a stderr handler. None reads ``MODELKEEPER_LOG_STDERR``.
    with_file : bool
        Add a rotating file handler (see :func:`_resolve_log_file`).
    file_path : Optional[Path]
        Force a specific log file.
    use_json : Optional[bool]
        JSON lines instead of text. None reads ``MODELKEEPER_LOG_JSON``.
    use_utc : Optional[bool]
        UTC timestamps. None reads ``MODELKEEPER_LOG_UTC``.
    max_bytes, backups : Optional[int]
        Rotation policy. None reads ``MODELKEEPER_LOG_MAX_BYTES`` / ``MODELKEEPER_LOG_BACKUPS``.
    propagate : bool
        Whether records also reach the root logger.
    force_reconfigure : bool
        Drop existing handlers and build new ones.
    extra_filters : Optional[Iterable[logging.Filter]]
        Filters attached to the logger (e.g. context filters).
    """
    lvl = _to_level(level)
    console = env_log_stderr(LOG_DEFAULT_STDERR) if with_console is None else with_console
    as_json = env_log_json(LOG_DEFAULT_JSON) if use_json is None else use_json
    utc = _env_bool("UTC", False) if use_utc is None else use_utc
    rotate_bytes = _env_int("MAX_BYTES", LOG_DEFAULT_MAX_BYTES) if max_bytes is None else max_bytes
    rotate_backups = _env_int("BACKUPS", LOG_DEFAULT_BACKUPS) if backups is None else backups

    logger = logging.getLogger(name)
    logger.propagate = propagate

    if name in _CONFIGURED_ROOTS:
        if not force_reconfigure:
            logger.setLevel(lvl)
            for h in logger.handlers:
                if not isinstance(h, logging.FileHandler):
                    h.setLevel(lvl)
            return logger
        reset_logging(name)

    logger.setLevel(lvl)

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(lvl)
        ch.setFormatter(_formatter(fmt_console, None, use_json=as_json, use_utc=utc))
        logger.addHandler(ch)

    if with_file:
        path = _resolve_log_file(explicit_path=file_path)
        if path is not None:
            fh = RotatingFileHandler(path, maxBytes=int(rotate_bytes), backupCount=int(rotate_backups), encoding="utf-8")
            fh.setLevel(logging.DEBUG)  # file keeps everything the logger lets through
            fh.setFormatter(_formatter(fmt_file, datefmt_file, use_json=as_json, use_utc=utc))
            logger.addHandler(fh)

    for flt in extra_filters or ():
        logger.addFilter(flt)

    _CONFIGURED_ROOTS.add(name)
    return logger


def get_logger(name: str = LOG_DEFAULT_NAME) -> logging.Logger:
    """
    Return a logger under the package root, configuring the root on first use.

    Child names (``modelkeeper.core.registry``) share the root's handlers.
    """
    root = name.split(".", 1)[0]
    if root == LOG_DEFAULT_NAME and root not in _CONFIGURED_ROOTS:
        setup_logger(name=root)
    elif root != LOG_DEFAULT_NAME and name not in _CONFIGURED_ROOTS:
        setup_logger(name=name)
    return logging.getLogger(name)


class _ContextFilter(logging.Filter):
    """Stamp static key/value pairs (component, model, ...) onto every record."""

    def __init__(self, **static_context: Any) -> None:
        super().__init__()
        self._ctx = static_context

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for k, v in self._ctx.items():
            setattr(record, k, v)
        return True


def add_context(logger: logging.Logger, **context: Any) -> None:
    """
    Attach static context (e.g. component='registry') to a logger.
    """
    if context:
        logger.addFilter(_ContextFilter(**context))


def set_global_level(level: int | str, name: str = LOG_DEFAULT_NAME) -> None:
    """
    Change the level of the package logger and all of its handlers.
    """
    lvl = _to_level(level)
    logger = get_logger(name)
    logger.setLevel(lvl)
    for h in logger.handlers:
        h.setLevel(lvl)


def silence_external() -> None:
    """
    Raise HTTP and Google client libraries to WARNING.
    """
    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def reset_logging(name: str = LOG_DEFAULT_NAME) -> None:
    """
    Close and remove all handlers for `name` and mark it as unconfigured.
    """
    logger = logging.getLogger(name)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    for flt in list(logger.filters):
        logger.removeFilter(flt)
    _CONFIGURED_ROOTS.discard(name)
