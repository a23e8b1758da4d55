"""Compression request/result models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from image_ingest.exceptions import ValidationFailed


class CompressionLevel(str, Enum):
    LOSSLESS = "lossless"
    MINIMAL = "minimal"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @classmethod
    def parse(cls, value) -> "CompressionLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationFailed(
                "Invalid compression level. Use: lossless, minimal, moderate, or aggressive",
                {"compression_level": value},
            ) from None


# Order tried by compress_to_target_size
LEVEL_ORDER = (
    CompressionLevel.LOSSLESS,
    CompressionLevel.MINIMAL,
    CompressionLevel.MODERATE,
    CompressionLevel.AGGRESSIVE,
)


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"
    UNKNOWN = "unknown"

    @classmethod
    def from_mime(cls, mime_type: Optional[str]) -> "ImageFormat":
        for fmt, mime in _FORMAT_MIME.items():
            if mime == (mime_type or "").lower():
                return fmt
        return cls.UNKNOWN

    @property
    def mime_type(self) -> Optional[str]:
        return _FORMAT_MIME.get(self)

    @property
    def extension(self) -> str:
        return "jpg" if self in (ImageFormat.JPEG, ImageFormat.UNKNOWN) else self.value


_FORMAT_MIME = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.GIF: "image/gif",
}


class DeviceClass(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"

    @classmethod
    def parse(cls, value) -> "DeviceClass":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationFailed(f"Invalid device type: {value}", {"device_type": value}) from None


class ImageType(str, Enum):
    THUMBNAIL = "thumbnail"
    GALLERY = "gallery"
    HERO = "hero"

    @classmethod
    def parse(cls, value) -> "ImageType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationFailed(f"Invalid image type: {value}", {"image_type": value}) from None


@dataclass(frozen=True)
class RawUpload:
    """An uploaded file held in memory. Owned by the caller for the duration of one call."""

    data: bytes = field(repr=False)
    filename: str = "upload"
    mime_type: Optional[str] = None  # as declared by the client

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return Path(self.filename or "").suffix.lstrip(".").lower()


@dataclass(frozen=True)
class ImageInfo:
    """Header-level facts about a decodable image."""

    width: int
    height: int
    mime_type: Optional[str]
    format: ImageFormat

    @property
    def aspect_ratio(self) -> float:
        return round(self.width / self.height, 2)


@dataclass(frozen=True)
class EncodeParams:
    format: ImageFormat
    quality: Optional[int] = None  # JPEG/WebP quality percentage
    compress_level: Optional[int] = None  # PNG zlib effort 0-9

    @property
    def quality_used(self) -> Optional[int]:
        if self.format == ImageFormat.PNG:
            return self.compress_level
        return self.quality

    def save_kwargs(self) -> dict:
        """Keyword arguments for ``PIL.Image.Image.save``. No metadata is ever passed."""
        if self.format == ImageFormat.PNG:
            return {"format": "PNG", "compress_level": self.compress_level}
        if self.format == ImageFormat.WEBP:
            return {"format": "WEBP", "quality": self.quality}
        if self.format == ImageFormat.GIF:
            return {"format": "GIF"}
        return {"format": "JPEG", "quality": self.quality, "optimize": True}


@dataclass(frozen=True)
class CompressionResult:
    data: bytes = field(repr=False)
    original_size: int
    compressed_size: int
    compression_ratio: float  # percent saved, may be negative
    savings_bytes: int
    width: int
    height: int
    mime_type: Optional[str]
    aspect_ratio: float
    compression_level: CompressionLevel
    quality_used: Optional[int]
    target_achieved: Optional[bool] = None
    target_size: Optional[int] = None

    def to_dimensions(self) -> dict:
        """Metadata blob stored alongside each image record."""
        return {
            "width": self.width,
            "height": self.height,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
            "compression_level": self.compression_level.value,
            "quality_used": self.quality_used,
        }
