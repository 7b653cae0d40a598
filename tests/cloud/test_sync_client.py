from __future__ import annotations

import json
import os
import sys
from dataclasses import replace

import pytest

from modelkeeper.cloud.sync_client import CloudSyncClient
from modelkeeper.core.errors import (
    AuthError,
    CloudOperationError,
    EndpointConnectionError,
    LocalStorageError,
    NotFoundError,
    TransferError,
)


@pytest.fixture
def creds_file(tmp_path):
    path = tmp_path / "client_secret.json"
    path.write_text(json.dumps({"installed": {"client_id": "abc"}}), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


def test_retry_once_then_succeed(config, fake_transport, events, sleeps, drive_token):
    settings = replace(config.cloud, backoff_base=1.0)
    client = CloudSyncClient(settings, config.paths, transport=fake_transport, on_event=events, sleep=sleeps.append)
    fake_transport.failures["list_folder"] = [EndpointConnectionError("reset by peer")]

    items = client.list_folder_contents("f1")

    assert items[0]["name"] == "alpha"
    assert fake_transport.operations() == ["list_folder", "list_folder"]
    assert sleeps == [1.0]
    retries = events.of("retry")
    assert len(retries) == 1
    assert retries[0].payload == {"attempt": 1, "operation": "list_folder", "error": "reset by peer"}


@pytest.mark.parametrize("error", [CloudOperationError("exit 1"), TransferError("cut"), EndpointConnectionError("down")])
def test_retry_budget_is_exhausted(cloud, fake_transport, events, drive_token, error):
    fake_transport.failures["storage_quota"] = [error, error, error]

    with pytest.raises(type(error)):
        cloud.get_storage_info()

    assert fake_transport.operations() == ["storage_quota", "storage_quota"]
    assert len(events.of("retry")) == 1


@pytest.mark.parametrize(
    "error", [AuthError("revoked"), NotFoundError("no folder"), LocalStorageError("disk full"), ValueError("bad")]
)
def test_non_retryable_errors_fail_immediately(cloud, fake_transport, events, drive_token, error):
    fake_transport.failures["list_folder"] = [error]

    with pytest.raises(type(error)):
        cloud.list_folder_contents("f1")

    assert fake_transport.operations() == ["list_folder"]
    assert events.of("retry") == []


def test_max_attempts_of_one_disables_retries(config, fake_transport, events, drive_token):
    client = CloudSyncClient(replace(config.cloud, max_attempts=1), config.paths, transport=fake_transport, on_event=events)
    fake_transport.failures["list_folder"] = [CloudOperationError("x")]

    with pytest.raises(CloudOperationError):
        client.list_folder_contents("f1")
    assert events.of("retry") == []


def test_operation_timeout_is_passed_through(config, drive_token):
    seen = []

    class Recorder:
        def execute(self, operation, params, *, timeout, progress=None):
            seen.append((operation, timeout))
            return {"folder_id": "x", "name": params.get("name")}

    client = CloudSyncClient(replace(config.cloud, operation_timeout=42.0), config.paths, transport=Recorder())
    client.create_folder("backups")

    assert seen == [("create_folder", 42.0)]


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def test_authenticate_stores_token(cloud, fake_transport, events, creds_file):
    assert cloud.is_authenticated() is False

    token = cloud.authenticate(creds_file)

    assert cloud.is_authenticated() is True
    assert json.loads(cloud.token_path.read_text(encoding="utf-8")) == token
    if sys.platform != "win32":
        assert (os.stat(cloud.token_path).st_mode & 0o777) == 0o600
    assert fake_transport.calls == [("authenticate", {"credentials_path": str(creds_file)})]
    assert events.of("authenticated")[0].payload == {"token_path": str(cloud.token_path)}


def test_authenticate_uses_the_auth_timeout(config, creds_file):
    seen = []

    class Recorder:
        def execute(self, operation, params, *, timeout, progress=None):
            seen.append(timeout)
            return {"token": "t"}

    client = CloudSyncClient(replace(config.cloud, auth_timeout=120.0), config.paths, transport=Recorder())
    client.authenticate(creds_file)

    assert seen == [120.0]


def test_authenticate_defaults_to_home_credentials(cloud, fake_transport, config):
    config.paths.credentials_file().write_text("{}", encoding="utf-8")

    cloud.authenticate()

    assert fake_transport.calls[0][1]["credentials_path"] == str(config.paths.credentials_file())


def test_authenticate_without_credentials(cloud, fake_transport, tmp_path):
    with pytest.raises(AuthError):
        cloud.authenticate(tmp_path / "missing.json")
    assert fake_transport.calls == []
    assert cloud.is_authenticated() is False


def test_authenticate_rejects_empty_token(cloud, fake_transport, creds_file):
    fake_transport.results["authenticate"] = {}
    with pytest.raises(CloudOperationError):
        cloud.authenticate(creds_file)
    assert cloud.is_authenticated() is False


def test_revoke_auth(cloud, events, drive_token):
    assert cloud.revoke_auth() is True
    assert not drive_token.exists()
    assert events.names() == ["auth-revoked"]
    assert cloud.revoke_auth() is False


def test_explicit_token_path_setting(config, fake_transport, tmp_path):
    custom = tmp_path / "elsewhere" / "token.json"
    client = CloudSyncClient(replace(config.cloud, token_path=custom), config.paths, transport=fake_transport)
    assert client.token_path == custom
    assert client.is_authenticated() is False
    custom.parent.mkdir()
    custom.write_text("{}", encoding="utf-8")
    assert client.is_authenticated() is True


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


def test_operations_require_a_token(cloud, fake_transport):
    with pytest.raises(AuthError):
        cloud.list_folder_contents("f1")
    with pytest.raises(AuthError):
        cloud.download_models("f1")
    with pytest.raises(AuthError):
        cloud.get_storage_info()
    assert fake_transport.calls == []


def test_upload_missing_directory_fails_before_any_call(cloud, fake_transport, drive_token, tmp_path):
    with pytest.raises(NotFoundError):
        cloud.upload_directory(tmp_path / "absent", "f1")

    file_path = tmp_path / "file.txt"
    file_path.write_text("x", encoding="utf-8")
    with pytest.raises(NotFoundError):
        cloud.upload_directory(file_path, "f1")

    assert fake_transport.calls == []


def test_upload_emits_progress(cloud, fake_transport, events, drive_token, config):
    result = cloud.upload_directory(config.paths.models(), "f1", compress=True)

    assert result["status"] == "completed"
    op, params = fake_transport.calls[0]
    assert op == "upload_directory"
    assert params == {
        "token_path": str(drive_token),
        "local_path": str(config.paths.models()),
        "parent_id": "f1",
        "compress": True,
    }
    assert [e.payload["file"] for e in events.of("upload-progress")] == ["a.bin"]


def test_download_targets_the_models_dir(cloud, fake_transport, drive_token, config):
    cloud.download_models("f1")
    assert fake_transport.calls[0][1]["output_path"] == str(config.paths.models())


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def test_sync_both_directions(cloud, fake_transport, events, drive_token):
    result = cloud.sync_models("f1")

    assert fake_transport.operations() == ["upload_directory", "download_folder"]
    assert result["uploaded"]["status"] == "completed"
    assert result["downloaded"]["status"] == "completed"
    stages = [e.payload["stage"] for e in events.of("sync-status")]
    assert stages == ["uploading", "downloading"]
    assert events.names()[-1] == "sync-complete"


@pytest.mark.parametrize("direction, ops", [("upload", ["upload_directory"]), ("download", ["download_folder"])])
def test_sync_single_direction(cloud, fake_transport, drive_token, direction, ops):
    cloud.sync_models("f1", direction=direction)
    assert fake_transport.operations() == ops


def test_sync_failure_reports_partial_results(cloud, fake_transport, events, drive_token):
    fake_transport.failures["download_folder"] = [CloudOperationError("quota"), CloudOperationError("quota")]

    with pytest.raises(CloudOperationError):
        cloud.sync_models("f1")

    errors = events.of("error")
    assert len(errors) == 1
    payload = errors[0].payload
    assert payload["type"] == "sync_failed"
    assert payload["partial"]["uploaded"]["status"] == "completed"
    assert payload["partial"]["downloaded"] is None
    assert events.of("sync-complete") == []


def test_sync_rejects_unknown_direction(cloud, fake_transport, drive_token):
    with pytest.raises(ValueError):
        cloud.sync_models("f1", direction="sideways")
    assert fake_transport.calls == []
