"""Cheap checks on raw upload bytes, run before any full decode."""
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from image_ingest.compression.models import ImageFormat, ImageInfo, RawUpload
from image_ingest.config import MAX_FILE_SIZE_BYTES, SUPPORTED_MIME_TYPES
from image_ingest.exceptions import FileTooLarge, UndecodableImage, UnsupportedFormat
from image_ingest.utils import format_file_size

logger = logging.getLogger("ingest.validator")


@dataclass(frozen=True)
class ValidationSettings:
    max_file_size: int = MAX_FILE_SIZE_BYTES
    supported_mime_types: tuple[str, ...] = SUPPORTED_MIME_TYPES


class ImageValidator:
    def __init__(self, settings: Optional[ValidationSettings] = None):
        self.settings = settings or ValidationSettings()

    def _context(self, raw: RawUpload) -> dict:
        return {"file_name": raw.filename, "file_size": raw.size, "mime_type": raw.mime_type}

    def probe(self, raw: RawUpload) -> ImageInfo:
        """Read the image header only. Raises UndecodableImage when dimensions are unavailable."""
        if not raw.data:
            raise UndecodableImage("Invalid image file", self._context(raw))
        try:
            with Image.open(io.BytesIO(raw.data)) as img:
                width, height = img.size
                mime_type = Image.MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise UndecodableImage(
                "Invalid image file",
                {**self._context(raw), "decoder_error": str(e)},
            ) from None
        if width <= 0 or height <= 0:
            raise UndecodableImage("Invalid image file", self._context(raw))
        return ImageInfo(
            width=width,
            height=height,
            mime_type=mime_type,
            format=ImageFormat.from_mime(mime_type),
        )

    def validate(self, raw: RawUpload) -> ImageInfo:
        """Size ceiling, then decodability, then format whitelist."""
        if raw.size > self.settings.max_file_size:
            limit_mb = self.settings.max_file_size // (1024 * 1024)
            raise FileTooLarge(
                f"File size exceeds {limit_mb}MB limit. Current size: {format_file_size(raw.size)}",
                self._context(raw),
            )
        info = self.probe(raw)
        if info.mime_type not in self.settings.supported_mime_types:
            raise UnsupportedFormat(
                "Unsupported image format. Supported: JPEG, PNG, WebP, GIF",
                {**self._context(raw), "detected_mime_type": info.mime_type},
            )
        logger.debug("Validated %s (%sx%s, %s)", raw.filename, info.width, info.height, info.mime_type)
        return info
