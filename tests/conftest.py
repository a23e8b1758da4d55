"""
Shared fixtures: in-memory images, blob stores and a pipeline wired to them.
"""
import io
import os
from datetime import datetime

# Keep the default SQLite file out of the tree; must be set before image_ingest.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from image_ingest.compression.models import RawUpload
from image_ingest.exceptions import StorageError
from image_ingest.pipeline import IngestionPipeline
from image_ingest.storage import DualWriter, MemoryBlobStore

FIXED_NOW = datetime(2025, 6, 18, 12, 30, 45)

MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}
EXT_BY_FORMAT = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif", "BMP": "bmp"}


def build_image_bytes(
    width: int,
    height: int,
    fmt: str = "JPEG",
    color=(180, 40, 40),
    mode: str = "RGB",
    with_metadata: bool = False,
    **save_kw,
) -> bytes:
    """Solid-colour image encoded in ``fmt``, optionally carrying EXIF / text metadata."""
    if mode == "P":
        img = Image.new("RGB", (width, height), color).convert("P")
    else:
        img = Image.new(mode, (width, height), color if mode != "L" else 128)
    if with_metadata:
        if fmt == "PNG":
            info = PngInfo()
            info.add_text("Comment", "shot on a very expensive camera " * 50)
            save_kw["pnginfo"] = info
        else:
            exif = Image.Exif()
            exif[0x010E] = "product photo description " * 1000  # ImageDescription
            exif[0x010F] = "CameraMaker"  # Make
            save_kw["exif"] = exif.tobytes()
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kw)
    img.close()
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    return build_image_bytes


@pytest.fixture
def make_upload():
    def _make(width: int, height: int, fmt: str = "JPEG", filename: str = None, **kwargs) -> RawUpload:
        data = build_image_bytes(width, height, fmt, **kwargs)
        name = filename or f"photo_{width}x{height}.{EXT_BY_FORMAT[fmt]}"
        return RawUpload(data=data, filename=name, mime_type=MIME_BY_FORMAT[fmt])
    return _make


class FailingBlobStore(MemoryBlobStore):
    """Memory store whose put (and optionally delete) always fails."""

    def __init__(self, fail_delete: bool = False):
        super().__init__()
        self.fail_delete = fail_delete

    def put(self, path: str, data: bytes) -> None:
        raise StorageError(f"disk full while writing {path}", path)

    def delete(self, path: str) -> None:
        if self.fail_delete:
            raise StorageError(f"permission denied removing {path}", path)
        super().delete(path)


@pytest.fixture
def primary_store():
    return MemoryBlobStore()


@pytest.fixture
def mirror_store():
    return MemoryBlobStore()


@pytest.fixture
def writer(primary_store, mirror_store):
    return DualWriter(primary_store, mirror_store)


@pytest.fixture
def pipeline(writer):
    return IngestionPipeline(writer=writer, clock=lambda: FIXED_NOW)


@pytest.fixture
def failing_store():
    return FailingBlobStore
