"""Center-crop an image to a target aspect ratio."""
import logging

from PIL import Image

logger = logging.getLogger("ingest.crop")

# name -> (width_ratio, height_ratio, filename suffix)
VARIANT_RATIOS = {
    "mobile_portrait": (4, 5, "_mobile_portrait"),
    "mobile_square": (1, 1, "_mobile_square"),
    "desktop_landscape": (16, 9, "_desktop_landscape"),
}


def crop_box(width: int, height: int, width_ratio: int, height_ratio: int) -> tuple[int, int, int, int]:
    """
    Largest centered (x, y, w, h) box of the requested ratio inside width x height.
    - wider than target: keep full height, crop width.
    - otherwise: keep full width, crop height.
    Sizes and offsets are floored, so the box never leaves the source bounds and an
    image already at the target ratio maps to (0, 0, width, height).
    """
    if width <= 0 or height <= 0 or width_ratio <= 0 or height_ratio <= 0:
        raise ValueError(f"Invalid crop request {width}x{height} to {width_ratio}:{height_ratio}")
    # width / height > width_ratio / height_ratio, without float rounding
    if width * height_ratio > height * width_ratio:
        new_h = height
        new_w = max(1, height * width_ratio // height_ratio)
        return (width - new_w) // 2, 0, new_w, new_h
    new_w = width
    new_h = max(1, width * height_ratio // width_ratio)
    return 0, (height - new_h) // 2, new_w, new_h


def crop_to_ratio(img: Image.Image, width_ratio: int, height_ratio: int) -> Image.Image:
    """Return a new center-cropped image. Never resizes; the caller owns and closes the result."""
    x, y, w, h = crop_box(img.width, img.height, width_ratio, height_ratio)
    logger.debug(
        "Crop %sx%s to %s:%s -> box (%s, %s, %s, %s)",
        img.width, img.height, width_ratio, height_ratio, x, y, w, h,
    )
    return img.crop((x, y, x + w, y + h))
