from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class DetectionSource(str, Enum):
    VEHICLE = "vehicle"
    SIGN = "sign"


@dataclass(frozen=True)
class Detection:
    """
    A labeled box in normalized [0, 1] image coordinates.

    Coordinates are not clamped: boxes near the frame border may extend past
    the unit square. The same type is used for decoder candidates and for the
    final per-frame results.
    """

    left: float
    top: float
    right: float
    bottom: float
    label: str
    confidence: float
    source: DetectionSource

    def as_ltrb(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_pixels(self, width: int, height: int) -> Tuple[float, float, float, float]:
        return self.left * width, self.top * height, self.right * width, self.bottom * height


# Decoder output before suppression has the same shape as a final detection.
Candidate = Detection
