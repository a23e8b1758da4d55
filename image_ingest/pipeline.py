"""Ingestion pipeline: validate, compress, check ratio, name, dual-write, report."""
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from image_ingest.aspect import AspectRatioPolicy
from image_ingest.compression.models import (
    CompressionLevel,
    CompressionResult,
    DeviceClass,
    ImageFormat,
    ImageType,
    RawUpload,
)
from image_ingest.compression.policy import recommend_level, recommendation
from image_ingest.compression.service import CODEC_ERRORS, Compressor, open_image
from image_ingest.config import IMAGE_PREFIX
from image_ingest.exceptions import (
    CompressionFailed,
    ImageProcessingError,
    RatioRejected,
    UndecodableImage,
    UnexpectedError,
)
from image_ingest.storage import DualWriter, default_writer
from image_ingest.utils import format_file_size
from image_ingest.variants import Rendition, VariantGenerator

logger = logging.getLogger("ingest.pipeline")

# client extensions accepted as-is for each detected format
_EXTENSION_ALIASES = {
    ImageFormat.JPEG: ("jpg", "jpeg", "jpe"),
    ImageFormat.PNG: ("png",),
    ImageFormat.WEBP: ("webp",),
    ImageFormat.GIF: ("gif",),
}


@dataclass
class ImageVariant:
    """One stored image for one device. The same ``image_path`` exists in the canonical and mirror stores."""

    product_id: int
    image_path: str
    device_type: DeviceClass
    image_type: ImageType
    aspect_ratio: float
    width: int
    height: int
    original_size: int
    compressed_size: int
    compression_ratio: float
    compression_level: CompressionLevel
    quality_used: Optional[int]
    sort_order: int = 0
    alt_text: Optional[str] = None
    id: Optional[int] = None
    deleted_at: Optional[str] = None

    @property
    def image_dimensions(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
            "compression_level": self.compression_level.value,
            "quality_used": self.quality_used,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "image_path": self.image_path,
            "alt_text": self.alt_text,
            "device_type": self.device_type.value,
            "image_type": self.image_type.value,
            "aspect_ratio": self.aspect_ratio,
            "image_dimensions": self.image_dimensions,
            "sort_order": self.sort_order,
        }


@dataclass(frozen=True)
class BatchItemError:
    file_index: int
    file_name: str
    error: str
    operation: str = "unknown"


@dataclass
class BatchUploadOutcome:
    results: list[ImageVariant] = field(default_factory=list)
    errors: list[BatchItemError] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        total_original = sum(v.original_size for v in self.results)
        total_compressed = sum(v.compressed_size for v in self.results)
        average = 0
        if self.results and total_original > 0:
            average = round((total_original - total_compressed) / total_original * 100, 2)
        return {
            "total_files": len(self.results) + len(self.errors),
            "successful": len(self.results),
            "failed": len(self.errors),
            "total_original_size": total_original,
            "total_compressed_size": total_compressed,
            "total_savings": total_original - total_compressed,
            "average_compression_ratio": average,
        }

    def to_dict(self) -> dict:
        return {
            "uploaded": [v.to_dict() for v in self.results],
            "errors": [
                {"file_index": e.file_index, "file": e.file_name, "error": e.error, "operation": e.operation}
                for e in self.errors
            ],
            "summary": self.summary,
        }


@dataclass
class RenditionSet:
    """Optimized original plus its fixed-ratio crops."""

    product_id: int
    image_type: ImageType
    original: Rendition
    variants: list[Rendition]
    original_size: int
    compression_level: CompressionLevel
    quality_used: Optional[int]

    @property
    def paths(self) -> list[str]:
        return [self.original.path] + [r.path for r in self.variants]

    def responsive_path(self, device: DeviceClass, mobile_format: str = "portrait") -> str:
        """Best rendition for a device; falls back to the optimized original."""
        device = DeviceClass.parse(device)
        by_name = {r.name: r.path for r in self.variants}
        if device == DeviceClass.MOBILE:
            if mobile_format == "square" and "mobile_square" in by_name:
                return by_name["mobile_square"]
            return by_name.get("mobile_portrait", self.original.path)
        return by_name.get("desktop_landscape", self.original.path)

    def to_dict(self) -> dict:
        out = {
            "product_id": self.product_id,
            "image_type": self.image_type.value,
            "original_path": self.original.path,
            "original_file_size": self.original_size,
            "optimized_file_size": self.original.size,
            "metadata_removed": self.original_size - self.original.size,
            "compression_level": self.compression_level.value,
            "quality_used": self.quality_used,
            "renditions": [self.original.to_dict()] + [r.to_dict() for r in self.variants],
        }
        for r in self.variants:
            out[f"{r.name}_path"] = r.path
        return out


@dataclass
class AnalysisReport:
    upload_ready: bool
    file_info: Optional[dict] = None
    device_compatibility: Optional[dict] = None
    compression_recommendation: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"error": self.error, "upload_ready": self.upload_ready}
        return {
            "file_info": self.file_info,
            "device_compatibility": self.device_compatibility,
            "compression_recommendation": self.compression_recommendation,
            "upload_ready": self.upload_ready,
        }


class IngestionPipeline:
    """
    Orchestrates Validator -> Compressor -> AspectRatioPolicy -> naming -> dual write.

    The pipeline keeps no per-call state, so one instance may serve concurrent
    callers as long as each call gets its own ``RawUpload``.
    """

    def __init__(
        self,
        writer: Optional[DualWriter] = None,
        compressor: Optional[Compressor] = None,
        aspect_policy: Optional[AspectRatioPolicy] = None,
        variant_generator: Optional[VariantGenerator] = None,
        prefix: str = IMAGE_PREFIX,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.writer = writer or default_writer()
        self.compressor = compressor or Compressor()
        self.aspect_policy = aspect_policy or AspectRatioPolicy()
        self.variant_generator = variant_generator or VariantGenerator(self.writer)
        self.prefix = prefix
        self.clock = clock

    @property
    def validator(self):
        return self.compressor.validator

    @staticmethod
    def recommend_level(size: int) -> CompressionLevel:
        return recommend_level(size)

    # naming

    def _stamp(self) -> str:
        return f"{self.clock().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(3)}"

    def generate_filename(self, product_id: int, device_type: str, image_type: str, extension: str) -> str:
        return f"product_{product_id}_{device_type}_{image_type}_{self._stamp()}.{extension}"

    @staticmethod
    def _extension(raw: RawUpload, mime_type: Optional[str]) -> str:
        fmt = ImageFormat.from_mime(mime_type)
        if raw.extension in _EXTENSION_ALIASES.get(fmt, ()):
            return raw.extension
        return fmt.extension

    # single upload

    def ingest(
        self,
        raw: RawUpload,
        product_id: int,
        device: DeviceClass,
        image_type: ImageType = ImageType.GALLERY,
        sort_order: int = 0,
        level: CompressionLevel = CompressionLevel.LOSSLESS,
    ) -> ImageVariant:
        start = time.perf_counter()
        context = {
            "file_name": raw.filename,
            "file_size": raw.size,
            "product_id": product_id,
            "device_type": getattr(device, "value", device),
            "compression_level": getattr(level, "value", level),
        }
        try:
            device = DeviceClass.parse(device)
            image_type = ImageType.parse(image_type)
            level = CompressionLevel.parse(level)

            result = self.compressor.compress(raw, level)
            # re-encoding never resizes, so this is also the source ratio
            self.aspect_policy.validate(result.aspect_ratio, device)

            filename = self.generate_filename(
                product_id, device.value, image_type.value, self._extension(raw, result.mime_type)
            )
            path = f"{self.prefix}/{filename}"
            self.writer.write(path, result.data, context)
        except ImageProcessingError:
            raise
        except Exception as e:
            logger.exception("Unexpected error uploading %s", raw.filename)
            raise UnexpectedError(f"Unexpected error during upload: {e}", context) from None

        variant = self._to_variant(result, product_id, path, device, image_type, sort_order)
        logger.info(
            "upload.success %s -> %s (%s, %.2f%% saved) in %.1f ms",
            raw.filename,
            path,
            device.value,
            result.compression_ratio,
            (time.perf_counter() - start) * 1000,
        )
        return variant

    @staticmethod
    def _to_variant(
        result: CompressionResult,
        product_id: int,
        path: str,
        device: DeviceClass,
        image_type: ImageType,
        sort_order: int,
    ) -> ImageVariant:
        return ImageVariant(
            product_id=product_id,
            image_path=path,
            device_type=device,
            image_type=image_type,
            aspect_ratio=result.aspect_ratio,
            width=result.width,
            height=result.height,
            original_size=result.original_size,
            compressed_size=result.compressed_size,
            compression_ratio=result.compression_ratio,
            compression_level=result.compression_level,
            quality_used=result.quality_used,
            sort_order=sort_order,
            alt_text=f"Product image for {device.value}",
        )

    # batch upload

    def ingest_many(
        self,
        raws: Iterable[RawUpload],
        product_id: int,
        device: DeviceClass,
        image_type: ImageType = ImageType.GALLERY,
        level: CompressionLevel = CompressionLevel.LOSSLESS,
        start_sort_order: int = 0,
    ) -> BatchUploadOutcome:
        """Process items one at a time; a failed item is recorded and the batch continues."""
        outcome = BatchUploadOutcome()
        for index, raw in enumerate(raws):
            try:
                variant = self.ingest(raw, product_id, device, image_type, start_sort_order + index, level)
            except ImageProcessingError as e:
                outcome.errors.append(BatchItemError(index, raw.filename, e.message, e.operation))
                continue
            outcome.results.append(variant)
        summary = outcome.summary
        logger.info(
            "Batch upload for product %s: %s/%s stored, %s failed, %s bytes saved",
            product_id,
            summary["successful"],
            summary["total_files"],
            summary["failed"],
            summary["total_savings"],
        )
        return outcome

    # multi-variant upload

    def ingest_with_variants(
        self,
        raw: RawUpload,
        product_id: int,
        image_type: ImageType = ImageType.GALLERY,
        level: CompressionLevel = CompressionLevel.LOSSLESS,
    ) -> RenditionSet:
        """Store the optimized original plus mobile portrait, mobile square and desktop landscape crops."""
        context = {"file_name": raw.filename, "file_size": raw.size, "product_id": product_id}
        image_type = ImageType.parse(image_type)
        level = CompressionLevel.parse(level)
        result = self.compressor.compress(raw, level)

        fmt = ImageFormat.from_mime(result.mime_type)
        params = self.compressor.policy.params_for(level, fmt)
        extension = self._extension(raw, result.mime_type)
        base_name = f"product_{product_id}_{image_type.value}_{self._stamp()}"
        original_path = f"{self.prefix}/{base_name}.{extension}"

        self.writer.write(original_path, result.data, context)
        original = Rendition(
            name="original",
            path=original_path,
            width=result.width,
            height=result.height,
            size=result.compressed_size,
        )
        try:
            with open_image(raw) as img:
                renditions = self.variant_generator.generate(img, self.prefix, base_name, extension, params)
        except Exception as e:
            self.writer.delete(original_path)
            if isinstance(e, ImageProcessingError):
                raise
            if isinstance(e, CODEC_ERRORS):
                raise CompressionFailed(f"Variant generation failed: {e}", context) from None
            logger.exception("Unexpected error generating variants for %s", raw.filename)
            raise UnexpectedError(f"Unexpected error during variant generation: {e}", context) from None

        logger.info("Stored %s with %s variants under %s", raw.filename, len(renditions), base_name)
        return RenditionSet(
            product_id=product_id,
            image_type=image_type,
            original=original,
            variants=renditions,
            original_size=result.original_size,
            compression_level=level,
            quality_used=result.quality_used,
        )

    # advisory calls

    def analyze_for_upload(self, raw: RawUpload, device: DeviceClass) -> AnalysisReport:
        """Check an upload without storing anything."""
        device = DeviceClass.parse(device)
        try:
            info = self.validator.probe(raw)
        except UndecodableImage as e:
            return AnalysisReport(upload_ready=False, error=e.message)

        ratio_valid = True
        ratio_message = f"Aspect ratio is valid for {device.value}"
        try:
            self.aspect_policy.validate(info.aspect_ratio, device)
        except RatioRejected as e:
            ratio_valid = False
            ratio_message = e.message

        max_size = self.validator.settings.max_file_size
        return AnalysisReport(
            upload_ready=ratio_valid and raw.size <= max_size,
            file_info={
                "name": raw.filename,
                "size": raw.size,
                "size_formatted": format_file_size(raw.size),
                "mime_type": info.mime_type,
                "format_supported": info.mime_type in self.validator.settings.supported_mime_types,
                "width": info.width,
                "height": info.height,
                "aspect_ratio": info.aspect_ratio,
            },
            device_compatibility={
                "device_type": device.value,
                "aspect_ratio_valid": ratio_valid,
                "aspect_ratio_message": ratio_message,
            },
            compression_recommendation=recommendation(raw, info.mime_type),
        )

    def compression_preview(self, raw: RawUpload, level: CompressionLevel) -> dict:
        """Compress without storing and report what the upload would save."""
        result = self.compressor.compress(raw, level)
        return {
            "original_size": result.original_size,
            "original_size_formatted": format_file_size(result.original_size),
            "compressed_size": result.compressed_size,
            "compressed_size_formatted": format_file_size(result.compressed_size),
            "compression_ratio": result.compression_ratio,
            "savings_bytes": result.savings_bytes,
            "savings_formatted": format_file_size(result.savings_bytes),
            "compression_level": result.compression_level.value,
            "quality_used": result.quality_used,
            "width": result.width,
            "height": result.height,
            "aspect_ratio": result.aspect_ratio,
        }

    # deletion

    def delete_image(self, variant: ImageVariant) -> bool:
        """Remove canonical and mirror copies. Not coordinated with in-flight uploads."""
        return self.writer.delete(variant.image_path)

    def delete_renditions(self, renditions: RenditionSet) -> bool:
        return all([self.writer.delete(path) for path in renditions.paths])
