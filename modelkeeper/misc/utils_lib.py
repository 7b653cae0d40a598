# utils_lib.py
from __future__ import annotations

import datetime as dt
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from modelkeeper.constants.tool_constants import sanitize_model_name

_LOG = logging.getLogger("modelkeeper.misc.utils")


class UtilsLib:
    """
    Filesystem and identifier helpers shared by the registry and the CLI.

    Features
    --------
    • UTC timestamps and collision-free training-run identifiers.
    • Atomic JSON writes (temp file + fsync + rename).
    • Recursive directory sizing and flat file copies.
    • Safe folder deletion with guardrails and optional subtree restriction.

    Notes
    -----
    Class methods only, so the helpers can be used without instantiation and
    patched in tests.
    """

    # -------------------------------------------------------------------------
    # Time and identifiers
    # -------------------------------------------------------------------------
    @classmethod
    def utc_now(cls) -> str:
        """Current UTC time as an ISO-8601 string with millisecond precision."""
        return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @classmethod
    def create_training_id(cls, output_name: str, root: Path) -> str:
        """
        Allocate a training-run identifier ``<sanitized output>_<epoch ms>``.

        The identifier is unique under `root`: if a directory with that name already
        exists (two runs inside the same millisecond), a numeric suffix is appended.

        Parameters
        ----------
        output_name : str
            Name of the model the run produces.
        root : Path
            Directory holding one artifact directory per training run.

        Returns
        -------
        str
            e.g. ``'alpha-tuned_1760870400123'`` or ``'alpha-tuned_1760870400123-1'``.
        """
        stamp = int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)
        base = f"{sanitize_model_name(output_name)}_{stamp}"
        candidate, n = base, 0
        while (root / candidate).exists():
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    # -------------------------------------------------------------------------
    # JSON persistence
    # -------------------------------------------------------------------------
    @classmethod
    def write_json_atomic(cls, path: Union[str, Path], data: Any) -> Path:
        """
        Serialize `data` next to `path` and atomically replace `path` with it.

        A crash mid-write leaves either the previous file or the new one, never a
        truncated mix. The temp file is removed on failure.
        """
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=dest.stem + "_", suffix=".tmp", dir=dest.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, dest)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return dest

    @classmethod
    def read_json(cls, path: Union[str, Path]) -> Any:
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    # -------------------------------------------------------------------------
    # Filesystem helpers
    # -------------------------------------------------------------------------
    @classmethod
    def dir_size(cls, path: Union[str, Path]) -> int:
        """
        Total size in bytes of all files below `path` (0 if it does not exist).

        Symlinks are followed like regular entries; unreadable entries are skipped.
        """
        root = Path(path)
        if not root.exists():
            return 0
        if root.is_file():
            return root.stat().st_size
        total = 0
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                try:
                    total += (Path(dirpath) / name).stat().st_size
                except OSError:
                    continue
        return total

    @classmethod
    def copy_files(cls, src_dir: Union[str, Path], dst_dir: Union[str, Path]) -> list[Path]:
        """
        Copy the regular files directly inside `src_dir` into `dst_dir` (created if needed).

        Subdirectories are not copied.

        Returns
        -------
        list[Path]
            Destination paths, sorted by name.
        """
        src = Path(src_dir)
        dst = Path(dst_dir)
        dst.mkdir(parents=True, exist_ok=True)
        copied: list[Path] = []
        for item in sorted(src.iterdir()):
            if item.is_file():
                target = dst / item.name
                shutil.copy2(item, target)
                copied.append(target)
        return copied

    @classmethod
    def delete_folder(
        cls,
        path_to_folder: Union[str, Path],
        *,
        missing_ok: bool = True,
        restrict_to: Optional[Path] = None,
    ) -> bool:
        """
        Safely delete a folder tree with guardrails.

        Parameters
        ----------
        path_to_folder : str | Path
            Directory to remove recursively.
        missing_ok : bool, default=True
            If True, return False when the folder does not exist instead of raising.
        restrict_to : Path, optional
            The folder must live inside this directory (resolved).

        Returns
        -------
        bool
            True if the folder was removed; False if it did not exist.

        Raises
        ------
        ValueError
            If the target is the filesystem root, the user's home, or outside `restrict_to`.
        """
        folder = Path(path_to_folder).expanduser().resolve()

        forbidden = {Path("/").resolve(), Path.home().resolve()}
        if os.name == "nt":
            forbidden.add(Path(os.environ.get("SystemDrive", "C:") + "\\").resolve())
        if folder in forbidden:
            raise ValueError(f"Refusing to delete unsafe path: {folder}")

        if restrict_to is not None:
            base = Path(restrict_to).expanduser().resolve()
            if folder == base:
                raise ValueError(f"Refusing to delete the restricted base itself: {base}")
            try:
                folder.relative_to(base)
            except ValueError as exc:
                raise ValueError(
                    f"Refusing to delete outside of restricted base: {base} (target: {folder})"
                ) from exc

        if not folder.exists():
            if missing_ok:
                _LOG.debug("Folder does not exist, nothing to delete: %s", folder)
                return False
            raise ValueError(f"Folder not found: {folder}")

        if not folder.is_dir():
            raise ValueError(f"Not a directory: {folder}")

        shutil.rmtree(folder)
        _LOG.info("Deleted folder: %s", folder)
        return True
