"""Device target aspect ratios and the tolerance test applied before storing an image."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from image_ingest.compression.models import DeviceClass
from image_ingest.config import ASPECT_RATIO_TOLERANCE
from image_ingest.exceptions import RatioRejected


@dataclass(frozen=True)
class DeviceRatio:
    ratio: float
    label: str  # e.g. "4:5"
    description: str
    examples: tuple[str, ...]
    recommended_min: str


@dataclass(frozen=True)
class AspectRatioSettings:
    tolerance: float = ASPECT_RATIO_TOLERANCE
    targets: Mapping[DeviceClass, DeviceRatio] = field(default_factory=lambda: MappingProxyType({
        DeviceClass.MOBILE: DeviceRatio(
            ratio=0.8,
            label="4:5",
            description="4:5 (Portrait)",
            examples=("400x500", "800x1000", "1200x1500"),
            recommended_min="400x500",
        ),
        DeviceClass.DESKTOP: DeviceRatio(
            ratio=1.78,
            label="16:9",
            description="16:9 (Landscape)",
            examples=("1920x1080", "1600x900", "1280x720"),
            recommended_min="1280x720",
        ),
    }))


class AspectRatioPolicy:
    def __init__(self, settings: Optional[AspectRatioSettings] = None):
        self.settings = settings or AspectRatioSettings()

    def target(self, device: DeviceClass) -> DeviceRatio:
        return self.settings.targets[DeviceClass.parse(device)]

    def is_valid(self, ratio: float, device: DeviceClass) -> bool:
        # round() keeps 0.65 / 0.95 inside the band despite float error
        return round(abs(ratio - self.target(device).ratio), 6) <= self.settings.tolerance

    def validate(self, ratio: float, device: DeviceClass) -> None:
        """Raise RatioRejected with corrective guidance when ``ratio`` is outside the device band."""
        device = DeviceClass.parse(device)
        if self.is_valid(ratio, device):
            return
        target = self.target(device)
        examples = target.examples[:2]
        raise RatioRejected(
            f"{device.value.capitalize()} images must have {target.label} aspect ratio ({target.ratio}). "
            f"Current ratio: {float(ratio)}. "
            f"Please upload an image with dimensions like {', '.join(examples)}, etc.",
            expected=target.ratio,
            actual=ratio,
            examples=target.examples,
            context={"device_type": device.value, "tolerance": self.settings.tolerance},
        )

    def info(self) -> dict:
        return {
            device.value: {
                "ratio": t.ratio,
                "description": t.description,
                "examples": list(t.examples),
                "recommended_min": t.recommended_min,
                "tolerance": self.settings.tolerance,
            }
            for device, t in self.settings.targets.items()
        }
