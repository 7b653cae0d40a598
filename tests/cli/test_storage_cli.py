from __future__ import annotations

import json

import pytest

from modelkeeper.cli.main import app


def test_stats_json(runner, cli_registry):
    (cli_registry.paths.models() / "m").mkdir()
    (cli_registry.paths.models() / "m" / "w.bin").write_bytes(b"x" * 2048)

    res = runner.invoke(app, ["storage", "stats", "--json"])

    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout) == {"local": {"total": 2048, "models": 2048, "training": 0}}


def test_stats_table(runner, cli_registry):
    res = runner.invoke(app, ["storage", "stats"])
    assert res.exit_code == 0
    assert "Total:" in res.stdout


@pytest.mark.parametrize(
    "kind, attr",
    [("base", "base"), ("models", "models"), ("manifest", "manifest_file"), ("token", "token_file")],
)
def test_path(runner, config, kind, attr):
    res = runner.invoke(app, ["storage", "path", kind])
    assert res.exit_code == 0, res.output
    assert res.stdout.strip() == str(getattr(config.paths, attr)())


def test_path_rejects_unknown_kind(runner):
    res = runner.invoke(app, ["storage", "path", "cache"])
    assert res.exit_code == 2
