# cloud/drive_api.py
"""
Google Drive v3 operations used by the cloud sync client.

This file imports nothing from ``modelkeeper`` so it can also be executed as a
script by another interpreter::

    python drive_api.py /tmp/gdrive_1760870400123_3f9a1c.json

The request file holds ``{"operation": ..., "params": {...}, "timeout": ...}``.
On success exactly one JSON line is printed on stdout. On failure a JSON object
``{"error": ..., "kind": ...}`` is printed on stderr and the exit code is 1.

Every operation accepts ``timeout`` (seconds, applied to each HTTP call) and an
optional ``progress`` callback receiving one dict per transferred file.
"""

from __future__ import annotations

import json
import os
import secrets
import socket
import sys
import tarfile
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME = "application/vnd.google-apps.folder"
GOOGLE_APPS_PREFIX = "application/vnd.google-apps."

Progress = Optional[Callable[[Dict[str, Any]], None]]


class DriveCallError(Exception):
    """
    Failure of a Drive operation.

    ``kind`` is one of ``auth``, ``not_found``, ``connection``, ``local`` or ``failed``.
    ``local`` covers local filesystem errors during a transfer.
    """

    KINDS = ("auth", "not_found", "connection", "local", "failed")

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind if kind in self.KINDS else "failed"


# ---------------------------------------------------------------------------
# Credentials and service construction
# ---------------------------------------------------------------------------


def _load_credentials(token_path: str):
    path = Path(token_path)
    if not path.exists():
        raise DriveCallError("auth", f"Token not found at {path}. Run setup first.")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise DriveCallError("auth", f"Unreadable token {path}: {e}") from e

    try:
        if data.get("type") == "service_account":
            from google.oauth2 import service_account

            return service_account.Credentials.from_service_account_info(data, scopes=SCOPES)

        from google.oauth2.credentials import Credentials

        creds = Credentials.from_authorized_user_info(data, SCOPES)
    except ValueError as e:
        raise DriveCallError("auth", f"Invalid token {path}: {e}") from e

    if not creds.valid:
        if not (creds.expired and creds.refresh_token):
            raise DriveCallError("auth", "Token is invalid and cannot be refreshed. Run setup again.")
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request

        try:
            creds.refresh(Request())
        except RefreshError as e:
            raise DriveCallError("auth", f"Token refresh rejected: {e}") from e
        path.write_text(creds.to_json(), encoding="utf-8")
    return creds


def _build_service(token_path: str, timeout: float):
    """Authorized Drive v3 resource with `timeout` applied to every HTTP call."""
    import httplib2
    from google_auth_httplib2 import AuthorizedHttp
    from googleapiclient.discovery import build

    creds = _load_credentials(token_path)
    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    return build("drive", "v3", http=http, cache_discovery=False)


def _media_upload(path: Path):
    from googleapiclient.http import MediaFileUpload

    return MediaFileUpload(str(path), resumable=True)


def _download_file(service, file_id: str, dest: Path) -> None:
    from googleapiclient.http import MediaIoBaseDownload

    part = dest.with_name(dest.name + ".part")
    try:
        with open(part, "wb") as fh:
            downloader = MediaIoBaseDownload(fh, service.files().get_media(fileId=file_id))
            done = False
            while not done:
                _status, done = downloader.next_chunk()
        os.replace(part, dest)
    finally:
        part.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def _classify(exc: Exception, what: str) -> DriveCallError:
    status = getattr(getattr(exc, "resp", None), "status", None)
    if status is not None:
        status = int(status)
        if status in (401, 403):
            return DriveCallError("auth", f"{what} rejected (HTTP {status}): {exc}")
        if status == 404:
            return DriveCallError("not_found", f"{what}: not found (HTTP 404)")
        if status == 429 or status >= 500:
            return DriveCallError("connection", f"{what} failed (HTTP {status}): {exc}")
        return DriveCallError("failed", f"{what} failed (HTTP {status}): {exc}")

    from google.auth.exceptions import RefreshError, TransportError
    from httplib2 import HttpLib2Error

    if isinstance(exc, RefreshError):
        return DriveCallError("auth", f"{what}: credentials rejected: {exc}")
    if isinstance(exc, (ConnectionError, TimeoutError, socket.timeout, socket.gaierror, HttpLib2Error, TransportError)):
        return DriveCallError("connection", f"{what}: Drive unreachable: {exc}")
    if isinstance(exc, OSError):
        return DriveCallError("local", f"{what}: local file error: {exc}")
    return DriveCallError("failed", f"{what} failed: {type(exc).__name__}: {exc}")


@contextmanager
def _translate_errors(what: str) -> Iterator[None]:
    try:
        yield
    except DriveCallError:
        raise
    except Exception as e:
        raise _classify(e, what) from e


# ---------------------------------------------------------------------------
# Folder helpers
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _list_children(service, parent_id: str, query: str = "") -> List[Dict[str, Any]]:
    q = f"'{_quote(parent_id)}' in parents and trashed = false"
    if query:
        q = f"{q} and {query}"
    items: List[Dict[str, Any]] = []
    page_token = None
    while True:
        resp = (
            service.files()
            .list(
                q=q,
                fields="nextPageToken, files(id, name, mimeType, size, modifiedTime)",
                pageSize=1000,
                pageToken=page_token,
            )
            .execute()
        )
        items.extend(resp.get("files", []))
        page_token = resp.get("nextPageToken")
        if not page_token:
            return items


def _find_child(service, parent_id: str, name: str, folder: bool) -> Optional[Dict[str, Any]]:
    mime = f"mimeType = '{FOLDER_MIME}'" if folder else f"mimeType != '{FOLDER_MIME}'"
    found = _list_children(service, parent_id, f"name = '{_quote(name)}' and {mime}")
    return found[0] if found else None


def _ensure_folder(service, parent_id: str, name: str) -> str:
    existing = _find_child(service, parent_id, name, folder=True)
    if existing:
        return existing["id"]
    body = {"name": name, "mimeType": FOLDER_MIME, "parents": [parent_id]}
    return service.files().create(body=body, fields="id").execute()["id"]


def _upload_file(service, path: Path, parent_id: str, name: str) -> Dict[str, Any]:
    existing = _find_child(service, parent_id, name, folder=False)
    media = _media_upload(path)
    if existing:
        created = service.files().update(fileId=existing["id"], media_body=media, fields="id").execute()
    else:
        body = {"name": name, "parents": [parent_id]}
        created = service.files().create(body=body, media_body=media, fields="id").execute()
    return {
        "file": str(path),
        "drive_id": created["id"],
        "size": path.stat().st_size,
        "updated": existing is not None,
    }


def _archive(root: Path) -> Path:
    """Pack `root` into a temp ``.tar.gz`` whose name cannot collide with a concurrent run."""
    fd, tmp = tempfile.mkstemp(
        prefix=f"gdrive_{int(time.time() * 1000)}_{secrets.token_hex(4)}_", suffix=".tar.gz"
    )
    os.close(fd)
    try:
        with tarfile.open(tmp, "w:gz") as tar:
            tar.add(str(root), arcname=root.name)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return Path(tmp)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def authenticate(credentials_path: str, timeout: float = 300.0, progress: Progress = None) -> Dict[str, Any]:
    """
    Turn a credentials file into a token document.

    A service-account key is its own token. An OAuth client file runs the
    installed-app flow (opens a browser, waits for the local redirect).
    """
    path = Path(credentials_path)
    if not path.exists():
        raise DriveCallError("auth", f"Credentials file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise DriveCallError("auth", f"Unreadable credentials file {path}: {e}") from e
    if data.get("type") == "service_account":
        return data

    from google_auth_oauthlib.flow import InstalledAppFlow

    with _translate_errors("Authentication"):
        try:
            flow = InstalledAppFlow.from_client_secrets_file(str(path), SCOPES)
        except ValueError as e:
            raise DriveCallError("auth", f"Invalid OAuth client file {path}: {e}") from e
        creds = flow.run_local_server(port=0, open_browser=True, timeout_seconds=int(timeout))
    if creds is None:
        raise DriveCallError("auth", "Authorization was not completed")
    return json.loads(creds.to_json())


def upload_directory(
    token_path: str,
    local_path: str,
    parent_id: str,
    compress: bool = False,
    timeout: float = 60.0,
    progress: Progress = None,
) -> Dict[str, Any]:
    """Upload a directory tree below `parent_id`, or a single archive of it when `compress`."""
    root = Path(local_path)
    if not root.is_dir():
        raise DriveCallError("not_found", f"Directory not found: {root}")

    files: List[Dict[str, Any]] = []
    with _translate_errors("Upload"):
        service = _build_service(token_path, timeout)
        if compress:
            archive = _archive(root)
            try:
                record = _upload_file(service, archive, parent_id, f"{root.name}.tar.gz")
            finally:
                archive.unlink(missing_ok=True)
            record["file"] = str(root)
            files.append(record)
            if progress:
                progress(record)
        else:
            folder_ids = {Path("."): parent_id}
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                rel = Path(dirpath).relative_to(root)
                folder_id = folder_ids[rel]
                for d in dirnames:
                    folder_ids[rel / d] = _ensure_folder(service, folder_id, d)
                for name in sorted(filenames):
                    record = _upload_file(service, Path(dirpath) / name, folder_id, name)
                    files.append(record)
                    if progress:
                        progress(record)

    return {"status": "completed", "path": str(root), "compressed": compress, "files": files}


def _unsafe_name(name: str) -> bool:
    if name in ("", ".", ".."):
        return True
    return "/" in name or "\\" in name


def download_folder(
    token_path: str,
    folder_id: str,
    output_path: str,
    timeout: float = 60.0,
    progress: Progress = None,
) -> Dict[str, Any]:
    """Mirror a Drive folder into `output_path`. Google-native documents are skipped."""
    out = Path(output_path)
    out.mkdir(parents=True, exist_ok=True)
    files: List[Dict[str, Any]] = []
    skipped: List[str] = []
    root = out.resolve()

    def _walk(service, remote_id: str, local_dir: Path) -> None:
        for item in _list_children(service, remote_id):
            name = item["name"]
            target = local_dir / name
            # Drive allows names like ".." or "a/b"; they must not leave the output tree
            if _unsafe_name(name) or not target.resolve().is_relative_to(root):
                skipped.append(str(target))
                continue
            mime = item.get("mimeType", "")
            if mime == FOLDER_MIME:
                target.mkdir(parents=True, exist_ok=True)
                _walk(service, item["id"], target)
            elif mime.startswith(GOOGLE_APPS_PREFIX):
                skipped.append(str(target))
            else:
                _download_file(service, item["id"], target)
                record = {"file": str(target), "drive_id": item["id"], "size": int(item.get("size") or 0)}
                files.append(record)
                if progress:
                    progress(record)

    with _translate_errors("Download"):
        service = _build_service(token_path, timeout)
        _walk(service, folder_id, out)

    return {"status": "completed", "path": str(out), "files": files, "skipped": skipped}


def list_folder(token_path: str, folder_id: str, timeout: float = 60.0, progress: Progress = None) -> List[Dict[str, Any]]:
    with _translate_errors("List folder"):
        service = _build_service(token_path, timeout)
        items = _list_children(service, folder_id)
    return [
        {
            "id": item["id"],
            "name": item["name"],
            "type": "folder" if item.get("mimeType") == FOLDER_MIME else "file",
            "size": int(item.get("size") or 0),
            "modified": item.get("modifiedTime"),
        }
        for item in items
    ]


def create_folder(
    token_path: str, name: str, parent_id: str = "root", timeout: float = 60.0, progress: Progress = None
) -> Dict[str, Any]:
    with _translate_errors("Create folder"):
        service = _build_service(token_path, timeout)
        body = {"name": name, "mimeType": FOLDER_MIME, "parents": [parent_id]}
        created = service.files().create(body=body, fields="id, name").execute()
    return {"folder_id": created["id"], "name": created.get("name", name)}


def storage_quota(token_path: str, timeout: float = 60.0, progress: Progress = None) -> Dict[str, Any]:
    with _translate_errors("Storage quota"):
        service = _build_service(token_path, timeout)
        about = service.about().get(fields="storageQuota").execute()
        quota = about.get("storageQuota", {})

        def _int(key: str) -> Optional[int]:
            value = quota.get(key)
            return None if value is None else int(value)

        # "limit" is absent for unlimited plans
        return {
            "limit": _int("limit"),
            "usage": _int("usage"),
            "usage_in_drive": _int("usageInDrive"),
            "usage_in_trash": _int("usageInDriveTrash"),
        }


OPERATIONS: Dict[str, Callable[..., Any]] = {
    "authenticate": authenticate,
    "upload_directory": upload_directory,
    "download_folder": download_folder,
    "list_folder": list_folder,
    "create_folder": create_folder,
    "storage_quota": storage_quota,
}


def _fail(message: str, kind: str) -> int:
    print(json.dumps({"error": message, "kind": kind}), file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        return _fail("usage: drive_api.py REQUEST_FILE", "failed")
    try:
        request = json.loads(Path(args[0]).read_text(encoding="utf-8"))
        operation = OPERATIONS[request["operation"]]
    except (OSError, ValueError, KeyError, TypeError) as e:
        return _fail(f"Invalid request file {args[0]}: {e}", "failed")

    try:
        result = operation(**(request.get("params") or {}), timeout=float(request.get("timeout", 60.0)))
    except DriveCallError as e:
        return _fail(str(e), e.kind)
    except Exception as e:
        return _fail(f"{type(e).__name__}: {e}", "failed")

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
