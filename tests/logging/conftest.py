from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from modelkeeper.logging import reset_logging


@pytest.fixture(autouse=True)
def clean_log_env(monkeypatch) -> Iterator[None]:
    """Start every test with an unconfigured package logger and no MODELKEEPER_LOG_* overrides."""
    for key in list(os.environ.keys()):
        if key.startswith("MODELKEEPER_LOG_"):
            monkeypatch.delenv(key, raising=False)

    reset_logging("modelkeeper")
    yield
    reset_logging("modelkeeper")
