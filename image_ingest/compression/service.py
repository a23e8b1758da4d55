"""Image compression service: decode, strip metadata, re-encode, report statistics."""
import io
import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

from PIL import Image

from image_ingest.compression.models import (
    LEVEL_ORDER,
    CompressionLevel,
    CompressionResult,
    EncodeParams,
    ImageFormat,
    RawUpload,
)
from image_ingest.compression.policy import CompressionPolicy
from image_ingest.compression.validator import ImageValidator
from image_ingest.config import TARGET_SIZE_BYTES
from image_ingest.exceptions import CompressionFailed, ImageProcessingError, UnexpectedError

logger = logging.getLogger("ingest.compression")

# info keys that describe pixels/animation rather than metadata; everything else is dropped
STRUCTURAL_INFO_KEYS = ("transparency", "duration", "loop", "background", "disposal")
# errors Pillow raises for corrupt or unencodable data
CODEC_ERRORS = (OSError, ValueError, EOFError, SyntaxError, Image.DecompressionBombError)


@contextmanager
def open_image(raw: RawUpload) -> Iterator[Image.Image]:
    """Fully decode ``raw``; the pixel buffer is released when the block exits, however it exits."""
    img = Image.open(io.BytesIO(raw.data))
    try:
        img.load()
        yield img
    finally:
        img.close()


def strip_metadata(img: Image.Image) -> None:
    for key in list(img.info):
        if key not in STRUCTURAL_INFO_KEYS:
            del img.info[key]


def encode_image(img: Image.Image, params: EncodeParams) -> bytes:
    """Encode ``img`` with ``params``. EXIF/ICC/XMP/comments never reach the encoder."""
    work = img
    if params.format == ImageFormat.JPEG and img.mode not in ("RGB", "L", "CMYK"):
        work = img.convert("RGB")
    try:
        strip_metadata(work)
        save_kw = params.save_kwargs()
        if params.format in (ImageFormat.GIF, ImageFormat.WEBP) and getattr(work, "is_animated", False):
            save_kw["save_all"] = True
        buf = io.BytesIO()
        work.save(buf, **save_kw)
        return buf.getvalue()
    finally:
        if work is not img:
            work.close()


class Compressor:
    """Re-encodes uploads under a compression level. Holds no per-call state."""

    def __init__(
        self,
        validator: Optional[ImageValidator] = None,
        policy: Optional[CompressionPolicy] = None,
    ):
        self.validator = validator or ImageValidator()
        self.policy = policy or CompressionPolicy()

    def compress(self, raw: RawUpload, level: CompressionLevel = CompressionLevel.LOSSLESS) -> CompressionResult:
        start = time.perf_counter()
        context = {
            "file_name": raw.filename,
            "file_size": raw.size,
            "compression_level": getattr(level, "value", level),
            "mime_type": raw.mime_type,
        }
        logger.info("compression.start %s", context)
        level = CompressionLevel.parse(level)
        info = self.validator.validate(raw)
        params = self.policy.params_for(level, info.format)

        try:
            with open_image(raw) as img:
                width, height = img.size
                data = encode_image(img, params)
        except ImageProcessingError:
            raise
        except CODEC_ERRORS as e:
            raise CompressionFailed(
                f"Compression process failed: {e}",
                {**context, "compression_error": str(e)},
            ) from None
        except Exception as e:
            logger.exception("Unexpected error compressing %s", raw.filename)
            raise UnexpectedError(
                f"Unexpected error during compression: {e}",
                {**context, "unexpected_error": str(e)},
            ) from None

        original_size = raw.size
        compressed_size = len(data)
        savings = original_size - compressed_size
        result = CompressionResult(
            data=data,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=round(savings / original_size * 100, 2),
            savings_bytes=savings,
            width=width,
            height=height,
            mime_type=info.mime_type,
            aspect_ratio=round(width / height, 2),
            compression_level=level,
            quality_used=params.quality_used,
        )
        logger.info(
            "compression.success %s: %s -> %s bytes (%.2f%%) in %.1f ms",
            raw.filename,
            original_size,
            compressed_size,
            result.compression_ratio,
            (time.perf_counter() - start) * 1000,
        )
        return result

    def compress_to_target_size(self, raw: RawUpload, target_bytes: int = TARGET_SIZE_BYTES) -> CompressionResult:
        """Try each level from lossless to aggressive; return the first that fits, else the aggressive one."""
        result = None
        for level in LEVEL_ORDER:
            result = self.compress(raw, level)
            if result.compressed_size <= target_bytes:
                logger.info("Target %s bytes reached at level %s for %s", target_bytes, level.value, raw.filename)
                return replace(result, target_achieved=True, target_size=target_bytes)
        logger.info("Target %s bytes not reached for %s; returning aggressive result", target_bytes, raw.filename)
        return replace(result, target_achieved=False, target_size=target_bytes)
