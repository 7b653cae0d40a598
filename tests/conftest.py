"""Shared fakes and fixtures for all test suites."""
from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest

from modelkeeper.cloud.sync_client import CloudSyncClient
from modelkeeper.constants.config_constants import StoragePaths
from modelkeeper.constants.tool_configs import ToolConfig, set_config
from modelkeeper.constants.tool_constants import sanitize_model_name
from modelkeeper.core.events import EventRecorder
from modelkeeper.core.registry_manager import RegistryManager
from modelkeeper.logging import reset_logging
from modelkeeper.serving.serving_client import ServedModel


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeServing:
    """In-memory stand-in for ServingClient."""

    host = "http://fake-serving:11434"

    def __init__(self, model_dir: Path) -> None:
        self.model_dir = model_dir
        self.healthy = True
        self.served: List[str] = []
        self.pulls: List[str] = []
        self.deleted: List[str] = []
        self.info: Dict[str, Any] = {"details": {"family": "llama", "parameter_size": "8B"}}

    def check_health(self) -> bool:
        return self.healthy

    def model_exists(self, name: str) -> bool:
        return (self.model_dir / sanitize_model_name(name)).is_dir()

    def pull_model(self, name: str, on_progress: Optional[Callable] = None) -> Dict[str, Any]:
        self.pulls.append(name)
        for record in ({"status": "pulling manifest"}, {"status": "downloading", "total": 10, "completed": 10}):
            if on_progress:
                on_progress(record)
        self.served.append(name)
        return {"success": True, "model": name}

    def show_model(self, name: str) -> Dict[str, Any]:
        return dict(self.info)

    def delete_model(self, name: str) -> Dict[str, Any]:
        self.deleted.append(name)
        return {"success": True, "model": name}

    def list_models(self) -> List[ServedModel]:
        return [ServedModel(name=n, size=1024) for n in self.served]

    def get_server_info(self) -> Dict[str, Any]:
        return {"available": self.healthy, "host": self.host, "models": len(self.served), "model_list": list(self.served)}


class FakeTransport:
    """
    Records Drive operations and answers from `results`.

    `failures[op]` is a list of exceptions raised (in order) before the result is returned.
    A callable result receives the params dict.
    """

    def __init__(self) -> None:
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, List[BaseException]] = {}
        self.results: Dict[str, Any] = {
            "authenticate": {"type": "authorized_user", "token": "tok", "refresh_token": "ref"},
            "create_folder": lambda p: {"folder_id": f"id-{p['name']}", "name": p["name"]},
            "upload_directory": {"status": "completed", "files": [{"file": "a.bin", "drive_id": "f1", "size": 3}]},
            "download_folder": {"status": "completed", "files": []},
            "list_folder": [{"id": "f1", "name": "alpha", "type": "folder", "size": 0, "modified": None}],
            "storage_quota": {"limit": 1000, "usage": 100, "usage_in_drive": 90, "usage_in_trash": 10},
        }

    def operations(self) -> List[str]:
        return [op for op, _ in self.calls]

    def execute(self, operation: str, params: Dict[str, Any], *, timeout: float, progress=None) -> Any:
        self.calls.append((operation, dict(params)))
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)
        result = self.results.get(operation)
        if callable(result):
            result = result(params)
        if progress is not None and isinstance(result, dict):
            for record in result.get("files") or []:
                progress(record)
        return result


def _write_token(paths: StoragePaths) -> Path:
    token = paths.token_file()
    token.parent.mkdir(parents=True, exist_ok=True)
    token.write_text(json.dumps({"token": "tok"}), encoding="utf-8")
    return token


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_env_and_home(monkeypatch, tmp_path_factory) -> Iterator[None]:
    """Isolate environment variables, the home directory and logging for each test."""
    # Kept outside the test's own tmp_path so tests can inspect tmp_path contents.
    tmp_path = tmp_path_factory.mktemp("isolated")
    for key in list(os.environ.keys()):
        if key.startswith("MODELKEEPER_") or key == "OLLAMA_HOST":
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setenv("MODELKEEPER_LOG_STDERR", "0")
    monkeypatch.setenv("MODELKEEPER_LOG_FILE", str(tmp_path / "logs" / "test.log"))
    monkeypatch.setenv("MODELKEEPER_HOME", str(tmp_path / "home"))
    set_config(ToolConfig(paths=StoragePaths(tmp_path / "home")))

    yield

    reset_logging("modelkeeper")


@pytest.fixture
def config() -> ToolConfig:
    from modelkeeper.core.config import get_config

    cfg = get_config()
    return replace(cfg, cloud=replace(cfg.cloud, backoff_base=0.0))


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fake_serving(config) -> FakeServing:
    return FakeServing(config.paths.models())


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def drive_token(config) -> Path:
    """A stored Drive token, so the cloud client counts as authenticated."""
    return _write_token(config.paths)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def cloud(config, fake_transport, events, sleeps) -> CloudSyncClient:
    return CloudSyncClient(config.cloud, config.paths, transport=fake_transport, on_event=events, sleep=sleeps.append)


@pytest.fixture
def registry(config, fake_serving, cloud, fake_transport, events) -> SimpleNamespace:
    """A RegistryManager wired to fakes, plus handles on every collaborator."""
    mgr = RegistryManager(config, serving=fake_serving, cloud=cloud, on_event=events)
    return SimpleNamespace(
        mgr=mgr,
        serving=fake_serving,
        transport=fake_transport,
        events=events,
        paths=config.paths,
        config=config,
    )
