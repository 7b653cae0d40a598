# tests/cli/conftest.py
from __future__ import annotations

import pytest
from typer.testing import CliRunner


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_registry(registry, monkeypatch):
    """Route every command to the fake-backed manager instead of building a real one."""
    from modelkeeper.cli import common

    monkeypatch.setattr(common, "build_manager", lambda quiet=False: registry.mgr, raising=True)
    return registry
