"""Device-aware image ingestion: validate, compress, ratio-check and dual-store product images."""
from image_ingest.aspect import AspectRatioPolicy
from image_ingest.compression import CompressionLevel, Compressor, DeviceClass, ImageType, RawUpload
from image_ingest.pipeline import IngestionPipeline

__all__ = [
    "AspectRatioPolicy",
    "CompressionLevel",
    "Compressor",
    "DeviceClass",
    "ImageType",
    "IngestionPipeline",
    "RawUpload",
]
