"""Compression level -> encoder parameter tables and level recommendations."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from image_ingest.compression.models import (
    CompressionLevel,
    EncodeParams,
    ImageFormat,
    RawUpload,
)
from image_ingest.config import MB
from image_ingest.utils import format_file_size


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class CompressionSettings:
    # JPEG/WebP quality percentage per level
    quality: Mapping[CompressionLevel, int] = field(default_factory=lambda: _frozen({
        CompressionLevel.LOSSLESS: 100,
        CompressionLevel.MINIMAL: 95,
        CompressionLevel.MODERATE: 85,
        CompressionLevel.AGGRESSIVE: 75,
    }))
    # PNG is lossless at every setting; only zlib effort changes
    png_effort: Mapping[CompressionLevel, int] = field(default_factory=lambda: _frozen({
        CompressionLevel.LOSSLESS: 1,
        CompressionLevel.MINIMAL: 3,
        CompressionLevel.MODERATE: 6,
        CompressionLevel.AGGRESSIVE: 9,
    }))


# size ceiling (exclusive) -> recommended level; anything larger is aggressive
RECOMMENDATION_THRESHOLDS = (
    (1 * MB, CompressionLevel.LOSSLESS, "File is already small, lossless compression recommended"),
    (5 * MB, CompressionLevel.MINIMAL, "Moderate file size, minimal compression recommended"),
    (15 * MB, CompressionLevel.MODERATE, "Large file size, moderate compression recommended"),
)
AGGRESSIVE_REASON = "Very large file size, aggressive compression recommended"

COMPRESSION_LEVEL_INFO = {
    CompressionLevel.LOSSLESS: {
        "label": "Lossless",
        "description": "Remove metadata only, no quality loss",
        "recommended_for": "High-quality images, professional photos",
        "typical_savings": "5-15%",
    },
    CompressionLevel.MINIMAL: {
        "label": "Minimal",
        "description": "Light compression with minimal quality loss",
        "recommended_for": "Product photos, detailed images",
        "typical_savings": "15-30%",
    },
    CompressionLevel.MODERATE: {
        "label": "Moderate",
        "description": "Balanced compression for web use",
        "recommended_for": "General web images, galleries",
        "typical_savings": "30-50%",
    },
    CompressionLevel.AGGRESSIVE: {
        "label": "Aggressive",
        "description": "Maximum compression for smaller files",
        "recommended_for": "Large files, thumbnails",
        "typical_savings": "50-70%",
    },
}


class CompressionPolicy:
    """Pure lookup from (level, format) to encoder parameters."""

    def __init__(self, settings: Optional[CompressionSettings] = None):
        self.settings = settings or CompressionSettings()

    def params_for(self, level: CompressionLevel, fmt: ImageFormat) -> EncodeParams:
        level = CompressionLevel.parse(level)
        if fmt == ImageFormat.PNG:
            return EncodeParams(ImageFormat.PNG, compress_level=self.settings.png_effort[level])
        if fmt == ImageFormat.GIF:
            return EncodeParams(ImageFormat.GIF)
        if fmt == ImageFormat.WEBP:
            return EncodeParams(ImageFormat.WEBP, quality=self.settings.quality[level])
        if fmt == ImageFormat.UNKNOWN:
            # Unknown rasters are encoded as JPEG
            return EncodeParams(ImageFormat.JPEG, quality=self.settings.quality[level])
        return EncodeParams(ImageFormat.JPEG, quality=self.settings.quality[level])


def recommend_level(size: int) -> CompressionLevel:
    for ceiling, level, _ in RECOMMENDATION_THRESHOLDS:
        if size < ceiling:
            return level
    return CompressionLevel.AGGRESSIVE


def recommendation(raw: RawUpload, mime_type: Optional[str] = None) -> dict:
    """Suggested level with a displayable reason and a format note."""
    size = raw.size
    mime_type = mime_type or raw.mime_type
    reason = AGGRESSIVE_REASON
    for ceiling, _, text in RECOMMENDATION_THRESHOLDS:
        if size < ceiling:
            reason = text
            break
    if mime_type == "image/png":
        type_note = "PNG files benefit more from lossless compression"
    elif mime_type == "image/jpeg":
        type_note = "JPEG files can handle moderate compression well"
    else:
        type_note = "Standard compression applies"
    return {
        "recommended_level": recommend_level(size).value,
        "reason": reason,
        "type_note": type_note,
        "file_size": size,
        "file_size_formatted": format_file_size(size),
        "mime_type": mime_type,
    }
