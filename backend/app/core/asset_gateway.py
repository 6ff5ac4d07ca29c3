# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Abstract AssetGateway
Clean interface over generated-asset storage.
Swap LocalAssetGateway for InMemoryAssetGateway with zero pipeline changes.

LocalAssetGateway     files under {storage_root}/{bucket}/, served by /assets
InMemoryAssetGateway  tests / throwaway development runs

Assets are addressed by a logical path inside the bucket
(e.g. "{puzzle_id}/{piece_id}.png"); the durable URL ends with
"/{bucket}/{logical_path}" so any URL can be mapped back to its path.
"""

from __future__ import annotations

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from app.api.middleware.error_handler import StorageError
from app.utils.logger import get_logger

log = get_logger(__name__)


def normalize_logical_path(logical_path: str) -> str:
    """
    Validate a bucket-relative path. Rejects absolute paths, empty
    segments and parent-directory traversal.
    """
    path = PurePosixPath(logical_path)
    if (
        not logical_path
        or path.is_absolute()
        or any(part in ("", ".", "..") for part in logical_path.split("/"))
    ):
        raise StorageError(f"Invalid asset path '{logical_path}'.")
    return str(path)


def piece_asset_path(puzzle_id: str, piece_id: str) -> str:
    return normalize_logical_path(f"{puzzle_id}/{piece_id}.png")


def source_asset_path(puzzle_id: str, extension: str = "webp") -> str:
    return normalize_logical_path(f"{puzzle_id}/source.{extension}")


# ─── Abstract Interface ──────────────────────────────────────────────────────

class AssetGateway(ABC):
    """
    Abstract base class for asset storage backends.
    All methods are synchronous; async wrappers live in the orchestrator.
    """

    def __init__(self, base_url: str, bucket: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def url_for(self, logical_path: str) -> str:
        return f"{self._base_url}/{normalize_logical_path(logical_path)}"

    def path_from_url(self, url: str) -> str:
        """
        Map a durable URL back to its logical path by locating the bucket
        segment. Query strings are ignored.
        Raises StorageError if the URL does not point into this bucket.
        """
        parts = urlparse(url).path.split("/")
        try:
            idx = parts.index(self._bucket)
        except ValueError:
            raise StorageError(f"URL is not inside bucket '{self._bucket}': {url}")
        rest = "/".join(parts[idx + 1:])
        if not rest:
            raise StorageError(f"URL has no asset path after the bucket: {url}")
        return normalize_logical_path(rest)

    def owns(self, url: str) -> bool:
        """True if url was produced by this gateway."""
        return bool(url) and url.startswith(self._base_url + "/")

    @abstractmethod
    def upload(self, data: bytes, logical_path: str, content_type: str) -> str:
        """Store data at logical_path (overwriting) and return its durable URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        """Delete the asset behind url. Deleting a missing asset succeeds."""

    @abstractmethod
    def read(self, url: str) -> bytes:
        """Return the bytes behind an owned url. Raises StorageError if absent."""


# ─── Local Filesystem Implementation ─────────────────────────────────────────

class LocalAssetGateway(AssetGateway):
    """
    Stores assets as plain files under root. Writes go through a temp file
    and os.replace so a reader never sees a half-written piece.
    """

    def __init__(self, root: Path, base_url: str, bucket: str) -> None:
        super().__init__(base_url, bucket)
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _file(self, logical_path: str) -> Path:
        return self._root / normalize_logical_path(logical_path)

    def upload(self, data: bytes, logical_path: str, content_type: str) -> str:
        dest = self._file(logical_path)
        tmp = None
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, dest)
        except OSError as exc:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"Failed to store asset '{logical_path}': {exc}") from exc

        log.debug(
            "asset_uploaded",
            backend="local",
            path=logical_path,
            content_type=content_type,
            size_bytes=len(data),
        )
        return self.url_for(logical_path)

    def delete(self, url: str) -> None:
        dest = self._file(self.path_from_url(url))
        try:
            dest.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete asset '{url}': {exc}") from exc
        log.debug("asset_deleted", backend="local", url=url)

    def read(self, url: str) -> bytes:
        src = self._file(self.path_from_url(url))
        try:
            return src.read_bytes()
        except OSError as exc:
            raise StorageError(f"Asset not readable '{url}': {exc}") from exc

    def resolve(self, logical_path: str) -> Path:
        """Filesystem path of an asset, used by the /assets route."""
        return self._file(logical_path)


# ─── In-Memory Implementation ────────────────────────────────────────────────

class InMemoryAssetGateway(AssetGateway):
    """
    Thread-safe in-memory asset store using a dict + RLock.
    All data is lost on process restart.
    """

    def __init__(
        self,
        base_url: str = "memory://assets/puzzle-images",
        bucket: str = "puzzle-images",
    ) -> None:
        super().__init__(base_url, bucket)
        self._store: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.RLock()

    def upload(self, data: bytes, logical_path: str, content_type: str) -> str:
        path = normalize_logical_path(logical_path)
        with self._lock:
            self._store[path] = (bytes(data), content_type)
        log.debug("asset_uploaded", backend="memory", path=path, size_bytes=len(data))
        return self.url_for(path)

    def delete(self, url: str) -> None:
        path = self.path_from_url(url)
        with self._lock:
            self._store.pop(path, None)
        log.debug("asset_deleted", backend="memory", url=url)

    def read(self, url: str) -> bytes:
        path = self.path_from_url(url)
        with self._lock:
            entry = self._store.get(path)
        if entry is None:
            raise StorageError(f"Asset not found: {url}")
        return entry[0]

    def content_type(self, logical_path: str) -> str | None:
        with self._lock:
            entry = self._store.get(normalize_logical_path(logical_path))
        return entry[1] if entry else None

    def count(self) -> int:
        with self._lock:
            return len(self._store)
