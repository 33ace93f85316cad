"""Snapshot persistence for the sync server's document tree.

The whole tree is written as gzip-compressed JSON. Writes go through a
temp file in the same directory followed by a rename, so a crash mid-save
leaves the previous snapshot intact. Files are owner-only (0o600).
"""

import contextlib
import gzip
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

_SNAPSHOT_DIR_MODE = 0o700
_SNAPSHOT_FILE_MODE = 0o600


class SnapshotStorage(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, documents: dict[str, Any]) -> None: ...


class LocalSnapshotStorage:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).resolve()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Read the saved tree. A missing file yields an empty tree; a corrupt one raises ValueError."""
        if not self._path.exists():
            return {}
        try:
            with gzip.open(self._path, "rt", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, EOFError, json.JSONDecodeError) as e:
            raise ValueError(f"Corrupt snapshot at {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Corrupt snapshot at {self._path}: expected an object")
        logger.info("loaded snapshot", path=str(self._path), top_level_keys=len(data))
        return data

    def save(self, documents: dict[str, Any]) -> None:
        directory = self._path.parent
        directory.mkdir(mode=_SNAPSHOT_DIR_MODE, parents=True, exist_ok=True)

        compressed = gzip.compress(json.dumps(documents, separators=(",", ":")).encode("utf-8"))

        fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp", prefix=".snapshot_")
        fd_owned = True
        try:
            with os.fdopen(fd, "wb") as f:
                fd_owned = False  # os.fdopen closes fd from here on
                f.write(compressed)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _SNAPSHOT_FILE_MODE)  # noqa: PTH101
            Path(tmp_path).replace(self._path)
        except BaseException:
            if fd_owned:
                with contextlib.suppress(OSError):
                    os.close(fd)
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise
        logger.info("saved snapshot", path=str(self._path), bytes=len(compressed))
