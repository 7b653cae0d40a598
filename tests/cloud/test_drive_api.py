from __future__ import annotations

import io
import json
import re
import socket
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from modelkeeper.cloud import drive_api
from modelkeeper.cloud.drive_api import FOLDER_MIME, DriveCallError


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeFiles:
    def __init__(self, drive: "FakeDrive") -> None:
        self.drive = drive

    def list(self, q: str, fields: str, pageSize: int, pageToken: Optional[str] = None):
        parent = re.search(r"'((?:[^'\\]|\\.)*)' in parents", q).group(1)
        name = re.search(r"name = '((?:[^'\\]|\\.)*)'", q)
        mime = re.search(r"mimeType (=|!=) '([^']*)'", q)

        def run():
            rows = [f for f in self.drive.items.values() if parent in f["parents"]]
            if name:
                rows = [f for f in rows if f["name"] == name.group(1).replace("\\'", "'")]
            if mime:
                op, value = mime.groups()
                rows = [f for f in rows if (f["mimeType"] == value) == (op == "=")]
            start = int(pageToken or 0)
            page = rows[start : start + self.drive.page_size]
            out: Dict[str, Any] = {"files": [dict(r) for r in page]}
            if start + self.drive.page_size < len(rows):
                out["nextPageToken"] = str(start + self.drive.page_size)
            self.drive.list_calls += 1
            return out

        return _Call(run)

    def create(self, body: Dict[str, Any], fields: str, media_body=None):
        def run():
            return self.drive.add(body["name"], body["parents"][0], body.get("mimeType", "application/octet-stream"), media_body)

        return _Call(run)

    def update(self, fileId: str, media_body, fields: str):
        def run():
            self.drive.updates.append((fileId, media_body))
            return {"id": fileId}

        return _Call(run)


class FakeAbout:
    def __init__(self, quota: Dict[str, str]) -> None:
        self.quota = quota

    def get(self, fields: str):
        return _Call(lambda: {"storageQuota": dict(self.quota)})


class FakeDrive:
    """In-memory Drive v3 resource covering the calls drive_api makes."""

    def __init__(self) -> None:
        self.items: Dict[str, Dict[str, Any]] = {}
        self.content: Dict[str, bytes] = {}
        self.updates: List[tuple] = []
        self.page_size = 2
        self.list_calls = 0
        self.quota = {"limit": "2000", "usage": "150", "usageInDrive": "100", "usageInDriveTrash": "50"}

    def add(self, name: str, parent: str, mime: str = "application/octet-stream", media=None, content: bytes = b"") -> Dict[str, Any]:
        file_id = f"id{len(self.items) + 1}"
        self.items[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": mime,
            "parents": [parent],
            "size": str(len(content)),
            "modifiedTime": "2026-10-01T00:00:00.000Z",
            "media": media,
        }
        self.content[file_id] = content
        return {"id": file_id, "name": name}

    def children(self, parent: str) -> Dict[str, Dict[str, Any]]:
        return {f["name"]: f for f in self.items.values() if parent in f["parents"]}

    def files(self) -> FakeFiles:
        return FakeFiles(self)

    def about(self) -> FakeAbout:
        return FakeAbout(self.quota)


@pytest.fixture
def drive(monkeypatch) -> FakeDrive:
    fake = FakeDrive()
    monkeypatch.setattr(drive_api, "_build_service", lambda token_path, timeout: fake)
    monkeypatch.setattr(drive_api, "_media_upload", lambda path: ("media", Path(path).name))

    def _download(service, file_id, dest):
        Path(dest).write_bytes(service.content[file_id])

    monkeypatch.setattr(drive_api, "_download_file", _download)
    return fake


@pytest.fixture
def model_tree(tmp_path) -> Path:
    root = tmp_path / "models"
    (root / "llama3_8b").mkdir(parents=True)
    (root / "llama3_8b" / "model.json").write_text('{"id": "llama3:8b"}', encoding="utf-8")
    (root / "llama3_8b" / "weights.bin").write_bytes(b"\x00" * 16)
    (root / "notes.txt").write_text("hi", encoding="utf-8")
    return root


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


def test_upload_mirrors_the_tree(drive, model_tree):
    seen: list = []

    result = drive_api.upload_directory("tok.json", str(model_tree), "root-folder", progress=seen.append)

    assert result["status"] == "completed"
    assert result["compressed"] is False
    top = drive.children("root-folder")
    assert set(top) == {"llama3_8b", "notes.txt"}
    assert top["llama3_8b"]["mimeType"] == FOLDER_MIME
    assert set(drive.children(top["llama3_8b"]["id"])) == {"model.json", "weights.bin"}
    assert len(seen) == 3
    assert all(r["updated"] is False for r in seen)
    weights = next(r for r in seen if r["file"].endswith("weights.bin"))
    assert weights["size"] == 16


def test_second_upload_updates_in_place(drive, model_tree):
    drive_api.upload_directory("tok.json", str(model_tree), "root-folder")
    count = len(drive.items)

    result = drive_api.upload_directory("tok.json", str(model_tree), "root-folder")

    assert len(drive.items) == count
    assert all(r["updated"] for r in result["files"])
    assert len(drive.updates) == 3


def test_compressed_upload_sends_one_archive(drive, model_tree, monkeypatch, tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))

    result = drive_api.upload_directory("tok.json", str(model_tree), "root-folder", compress=True)

    assert result["compressed"] is True
    assert list(drive.children("root-folder")) == ["models.tar.gz"]
    assert result["files"][0]["file"] == str(model_tree)
    assert list(scratch.iterdir()) == []


def test_upload_missing_directory(drive, tmp_path):
    with pytest.raises(DriveCallError) as exc:
        drive_api.upload_directory("tok.json", str(tmp_path / "nope"), "root-folder")
    assert exc.value.kind == "not_found"


# ---------------------------------------------------------------------------
# Download, listing, folders, quota
# ---------------------------------------------------------------------------


def test_download_mirrors_folders_and_skips_google_docs(drive, tmp_path):
    folder = drive.add("llama3_8b", "backup", FOLDER_MIME)["id"]
    drive.add("model.json", folder, content=b'{"id": "llama3:8b"}')
    drive.add("weights.bin", folder, content=b"1234")
    drive.add("README", "backup", "application/vnd.google-apps.document")
    out = tmp_path / "restore"
    seen: list = []

    result = drive_api.download_folder("tok.json", "backup", str(out), progress=seen.append)

    assert (out / "llama3_8b" / "weights.bin").read_bytes() == b"1234"
    assert json.loads((out / "llama3_8b" / "model.json").read_text(encoding="utf-8")) == {"id": "llama3:8b"}
    assert result["skipped"] == [str(out / "README")]
    assert len(result["files"]) == 2 == len(seen)
    assert not (out / "README").exists()


def test_download_skips_names_that_leave_the_output_tree(drive, tmp_path):
    home = tmp_path / "home"
    out = home / "models"
    up = drive.add("..", "remote-root", FOLDER_MIME)["id"]
    drive.add("escaped.bin", up, content=b"pwn")
    drive.add("sub/file.bin", "remote-root", content=b"x")
    drive.add(".", "remote-root", content=b"x")
    drive.add("kept.bin", "remote-root", content=b"ok")

    result = drive_api.download_folder("tok.json", "remote-root", str(out))

    assert not (home / "escaped.bin").exists()
    assert not (out / "sub").exists()
    assert (out / "kept.bin").read_bytes() == b"ok"
    assert [r["file"] for r in result["files"]] == [str(out / "kept.bin")]
    assert sorted(result["skipped"]) == sorted([str(out / ".."), str(out / "sub/file.bin"), str(out / ".")])
    assert drive.list_calls == 2


def test_download_does_not_follow_a_local_symlink_out(drive, tmp_path):
    out = tmp_path / "models"
    out.mkdir()
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    (out / "link").symlink_to(elsewhere, target_is_directory=True)
    folder = drive.add("link", "remote-root", FOLDER_MIME)["id"]
    drive.add("w.bin", folder, content=b"1")

    result = drive_api.download_folder("tok.json", "remote-root", str(out))

    assert list(elsewhere.iterdir()) == []
    assert result["files"] == []
    assert result["skipped"] == [str(out / "link")]


def test_local_write_failure_is_not_a_connection_error(drive, tmp_path, monkeypatch):
    drive.add("w.bin", "remote-root", content=b"1")

    def _denied(service, file_id, dest):
        raise PermissionError(13, "Permission denied", str(dest))

    monkeypatch.setattr(drive_api, "_download_file", _denied)
    with pytest.raises(DriveCallError) as exc:
        drive_api.download_folder("tok.json", "remote-root", str(tmp_path / "models"))
    assert exc.value.kind == "local"
    assert "unreachable" not in str(exc.value)


def test_list_folder_follows_pages(drive):
    drive.add("sub", "parent", FOLDER_MIME)
    for i in range(4):
        drive.add(f"f{i}.bin", "parent", content=b"x" * i)

    items = drive_api.list_folder("tok.json", "parent")

    assert len(items) == 5
    assert drive.list_calls == 3
    assert items[0] == {"id": "id1", "name": "sub", "type": "folder", "size": 0, "modified": "2026-10-01T00:00:00.000Z"}
    assert {i["type"] for i in items[1:]} == {"file"}
    assert items[-1]["size"] == 3


def test_create_folder(drive):
    created = drive_api.create_folder("tok.json", "modelkeeper-models")
    assert created == {"folder_id": "id1", "name": "modelkeeper-models"}
    assert drive.items["id1"]["parents"] == ["root"]


def test_storage_quota(drive):
    assert drive_api.storage_quota("tok.json") == {
        "limit": 2000,
        "usage": 150,
        "usage_in_drive": 100,
        "usage_in_trash": 50,
    }


def test_storage_quota_unlimited(drive):
    del drive.quota["limit"]
    assert drive_api.storage_quota("tok.json")["limit"] is None


def test_names_with_quotes_are_escaped(drive, tmp_path):
    root = tmp_path / "src"
    root.mkdir()
    (root / "it's.bin").write_bytes(b"1")

    drive_api.upload_directory("tok.json", str(root), "p")
    drive_api.upload_directory("tok.json", str(root), "p")

    assert list(drive.children("p")) == ["it's.bin"]


# ---------------------------------------------------------------------------
# Errors and credentials
# ---------------------------------------------------------------------------


class _Resp:
    def __init__(self, status: int) -> None:
        self.status = status


class _HttpFailure(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.resp = _Resp(status)


@pytest.mark.parametrize(
    "status, kind",
    [(401, "auth"), (403, "auth"), (404, "not_found"), (429, "connection"), (503, "connection"), (400, "failed")],
)
def test_classify_http_status(status, kind):
    assert drive_api._classify(_HttpFailure(status), "Upload").kind == kind


def test_classify_transport_and_unknown_errors():
    assert drive_api._classify(ConnectionResetError("reset"), "Upload").kind == "connection"
    assert drive_api._classify(socket.timeout("timed out"), "Upload").kind == "connection"
    assert drive_api._classify(socket.gaierror(-2, "Name or service not known"), "Upload").kind == "connection"
    assert drive_api._classify(RuntimeError("odd"), "Upload").kind == "failed"


@pytest.mark.parametrize(
    "error",
    [FileNotFoundError(2, "No such file or directory"), PermissionError(13, "Permission denied"), OSError(28, "No space left")],
)
def test_classify_local_filesystem_errors(error):
    classified = drive_api._classify(error, "Download")
    assert classified.kind == "local"
    assert "local file error" in str(classified)


def test_malformed_quota_is_a_failed_call(drive):
    drive.quota["usage"] = "lots"
    with pytest.raises(DriveCallError) as exc:
        drive_api.storage_quota("tok.json")
    assert exc.value.kind == "failed"



def test_operation_errors_are_translated(drive, monkeypatch):
    def broken(*args, **kwargs):
        raise _HttpFailure(404)

    monkeypatch.setattr(drive_api, "_list_children", broken)
    with pytest.raises(DriveCallError) as exc:
        drive_api.list_folder("tok.json", "gone")
    assert exc.value.kind == "not_found"


def test_missing_token_is_an_auth_error(tmp_path):
    with pytest.raises(DriveCallError) as exc:
        drive_api._load_credentials(str(tmp_path / "token.json"))
    assert exc.value.kind == "auth"


def test_service_account_key_is_its_own_token(tmp_path):
    key = {"type": "service_account", "client_email": "svc@example.iam.gserviceaccount.com"}
    path = tmp_path / "sa.json"
    path.write_text(json.dumps(key), encoding="utf-8")

    assert drive_api.authenticate(str(path)) == key


def test_authenticate_missing_credentials(tmp_path):
    with pytest.raises(DriveCallError) as exc:
        drive_api.authenticate(str(tmp_path / "client.json"))
    assert exc.value.kind == "auth"


def test_unknown_kind_falls_back_to_failed():
    assert DriveCallError("exploded", "x").kind == "failed"


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------


def _run_main(argv) -> tuple[int, str, str]:
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = drive_api.main(argv)
    return code, out.getvalue(), err.getvalue()


def _request(tmp_path: Path, operation: str, params: dict, timeout: float = 12.0) -> str:
    path = tmp_path / "gdrive_1_abc.json"
    path.write_text(json.dumps({"operation": operation, "params": params, "timeout": timeout}), encoding="utf-8")
    return str(path)


def test_main_prints_one_json_line(tmp_path, monkeypatch):
    monkeypatch.setitem(
        drive_api.OPERATIONS, "create_folder", lambda name, timeout, **kw: {"folder_id": "x", "name": name, "t": timeout}
    )

    code, out, err = _run_main([_request(tmp_path, "create_folder", {"name": "backups"})])

    assert code == 0
    assert out.count("\n") == 1
    assert json.loads(out) == {"folder_id": "x", "name": "backups", "t": 12.0}
    assert err == ""


def test_main_reports_failure_kind(tmp_path, monkeypatch):
    def denied(**kwargs):
        raise DriveCallError("auth", "token revoked")

    monkeypatch.setitem(drive_api.OPERATIONS, "list_folder", denied)

    code, out, err = _run_main([_request(tmp_path, "list_folder", {})])

    assert code == 1
    assert out == ""
    assert json.loads(err) == {"error": "token revoked", "kind": "auth"}


def test_main_unexpected_exception(tmp_path, monkeypatch):
    def crash(**kwargs):
        raise KeyError("files")

    monkeypatch.setitem(drive_api.OPERATIONS, "list_folder", crash)
    code, _, err = _run_main([_request(tmp_path, "list_folder", {})])
    assert code == 1
    assert json.loads(err)["kind"] == "failed"


@pytest.mark.parametrize("argv", [[], ["a", "b"]])
def test_main_usage(argv):
    code, _, err = _run_main(argv)
    assert code == 1
    assert "usage" in json.loads(err)["error"]


def test_main_rejects_unknown_operation(tmp_path):
    code, _, err = _run_main([_request(tmp_path, "format_drive", {})])
    assert code == 1
    assert "Invalid request file" in json.loads(err)["error"]
