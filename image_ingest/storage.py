"""Blob stores and the canonical + mirror dual write."""
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

from image_ingest.config import PUBLIC_DIR, STORAGE_DIR
from image_ingest.exceptions import FileSystemError, PartialWriteFailure, StorageError

logger = logging.getLogger("ingest.storage")


class BlobStore(ABC):
    """Key/path addressed byte store. Paths are relative, '/'-separated."""

    @abstractmethod
    def put(self, path: str, data: bytes) -> None: ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove ``path``. Deleting a missing path is not an error."""

    @abstractmethod
    def exists(self, path: str) -> bool: ...


class LocalBlobStore(BlobStore):
    """Files under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise StorageError(f"Invalid blob path: {path}", path)
        return self.root.joinpath(*rel.parts)

    def put(self, path: str, data: bytes) -> None:
        dest = self._resolve(path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}", path) from e

    def delete(self, path: str) -> None:
        try:
            self._resolve(path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not remove {path}: {e}", path) from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def __repr__(self) -> str:
        return f"LocalBlobStore({str(self.root)!r})"


class MemoryBlobStore(BlobStore):
    """Dict-backed store for tests and ephemeral runs."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes) -> None:
        with self._lock:
            self.blobs[path] = bytes(data)

    def delete(self, path: str) -> None:
        with self._lock:
            self.blobs.pop(path, None)

    def exists(self, path: str) -> bool:
        return path in self.blobs

    def get(self, path: str) -> Optional[bytes]:
        return self.blobs.get(path)


class DualWriter:
    """
    Write the same bytes to a canonical store and a direct-access mirror store.
    A write only counts when both copies land. If the mirror write fails, the
    canonical copy is deleted (best effort) and PartialWriteFailure is raised.
    """

    def __init__(self, primary: BlobStore, mirror: BlobStore):
        self.primary = primary
        self.mirror = mirror

    def write(self, path: str, data: bytes, context: Optional[dict] = None) -> None:
        context = dict(context or {})
        try:
            self.primary.put(path, data)
        except StorageError as e:
            raise FileSystemError(f"Failed to store {path}: {e}", {**context, "path": path}) from None

        try:
            self.mirror.put(path, data)
        except StorageError as e:
            cleaned_up = True
            try:
                self.primary.delete(path)
            except StorageError as cleanup_err:
                cleaned_up = False
                logger.warning("Could not remove orphaned canonical copy %s: %s", path, cleanup_err)
            raise PartialWriteFailure(
                f"Stored canonical copy but mirror write failed for {path}: {e}",
                written_path=path,
                failed_path=path,
                cleaned_up=cleaned_up,
                context=context,
            ) from None
        logger.info("Stored %s (%s bytes) in canonical and mirror stores", path, len(data))

    def delete(self, path: str) -> bool:
        """Remove both copies. Returns False if either removal failed."""
        ok = True
        for store in (self.primary, self.mirror):
            try:
                store.delete(path)
            except StorageError as e:
                ok = False
                logger.warning("Could not remove %s from %r: %s", path, store, e)
        return ok

    def exists(self, path: str) -> bool:
        return self.primary.exists(path) and self.mirror.exists(path)


def default_writer() -> DualWriter:
    return DualWriter(LocalBlobStore(STORAGE_DIR), LocalBlobStore(PUBLIC_DIR))
