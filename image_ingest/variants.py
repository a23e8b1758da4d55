"""Fixed-ratio renditions (mobile portrait, mobile square, desktop landscape) of one source image."""
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from image_ingest.compression.crop import VARIANT_RATIOS, crop_to_ratio
from image_ingest.compression.models import EncodeParams
from image_ingest.compression.service import encode_image
from image_ingest.storage import DualWriter

logger = logging.getLogger("ingest.variants")


@dataclass(frozen=True)
class Rendition:
    name: str  # "original", "mobile_portrait", ...
    path: str  # same relative path in canonical and mirror stores
    width: int
    height: int
    size: int

    @property
    def aspect_ratio(self) -> float:
        return round(self.width / self.height, 2)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "size": self.size,
        }


def variant_path(prefix: str, base_name: str, suffix: str, extension: str) -> str:
    return f"{prefix}/{base_name}{suffix}.{extension}"


class VariantGenerator:
    def __init__(self, writer: DualWriter, ratios: Optional[dict] = None):
        self.writer = writer
        self.ratios = ratios or VARIANT_RATIOS

    def generate(
        self,
        img: Image.Image,
        prefix: str,
        base_name: str,
        extension: str,
        params: EncodeParams,
    ) -> list[Rendition]:
        """
        Crop, encode and dual-write every configured ratio. Each crop is closed
        before the next one is made. If any step fails, renditions already
        written are removed (best effort) before the error propagates.
        """
        renditions: list[Rendition] = []
        try:
            for name, (width_ratio, height_ratio, suffix) in self.ratios.items():
                cropped = crop_to_ratio(img, width_ratio, height_ratio)
                try:
                    width, height = cropped.size
                    data = encode_image(cropped, params)
                finally:
                    cropped.close()
                path = variant_path(prefix, base_name, suffix, extension)
                self.writer.write(path, data, {"variant": name, "base_name": base_name})
                renditions.append(Rendition(name=name, path=path, width=width, height=height, size=len(data)))
                logger.info("Generated %s %sx%s (%s bytes) -> %s", name, width, height, len(data), path)
        except Exception:
            for rendition in renditions:
                self.writer.delete(rendition.path)
            raise
        return renditions
