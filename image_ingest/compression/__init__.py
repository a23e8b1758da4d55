from .models import CompressionLevel, CompressionResult, DeviceClass, ImageFormat, ImageType, RawUpload
from .policy import CompressionPolicy, CompressionSettings, recommend_level
from .service import Compressor
from .validator import ImageValidator, ValidationSettings

__all__ = [
    "CompressionLevel",
    "CompressionPolicy",
    "CompressionResult",
    "CompressionSettings",
    "Compressor",
    "DeviceClass",
    "ImageFormat",
    "ImageType",
    "ImageValidator",
    "RawUpload",
    "ValidationSettings",
    "recommend_level",
]
