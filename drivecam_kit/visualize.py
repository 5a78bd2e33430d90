from __future__ import annotations

from typing import Dict, Iterable, Tuple

import cv2
import numpy as np

from .postprocess import CONFIDENCE_THRESHOLD
from .types import Detection, DetectionSource


Color = Tuple[int, int, int]

# RGB
SOURCE_COLORS: Dict[DetectionSource, Color] = {
    DetectionSource.VEHICLE: (0, 255, 0),
    DetectionSource.SIGN: (0, 0, 255),
}
TEXT_COLOR: Color = (255, 255, 255)
FONT = cv2.FONT_HERSHEY_SIMPLEX


def format_label(det: Detection) -> str:
    return f"{det.label} {det.confidence * 100:.0f}%"


def _pixel_box(det: Detection, width: int, height: int) -> Tuple[int, int, int, int]:
    left, top, right, bottom = det.to_pixels(width, height)
    xs = np.clip(np.rint([left, right]), 0, width - 1).astype(int)
    ys = np.clip(np.rint([top, bottom]), 0, height - 1).astype(int)
    return int(xs[0]), int(ys[0]), int(xs[1]), int(ys[1])


def _blend_rect(image: np.ndarray, x0: int, y0: int, x1: int, y1: int, color: Color, alpha: float) -> None:
    if x1 <= x0 or y1 <= y0:
        return
    patch = image[y0:y1, x0:x1].astype(np.float32)
    patch += (np.asarray(color, dtype=np.float32) - patch) * alpha
    image[y0:y1, x0:x1] = np.clip(np.rint(patch), 0, 255).astype(np.uint8)


def draw_detections(
    image_rgb: np.ndarray,
    detections: Iterable[Detection],
    *,
    min_confidence: float = CONFIDENCE_THRESHOLD,
    box_thickness: int = 4,
    font_scale: float = 0.8,
    font_thickness: int = 2,
    label_alpha: float = 160 / 255,
) -> np.ndarray:
    """
    Overlay detections on a copy of an RGB frame.

    Each box is outlined in its source colour with a translucent label band
    ("car 87%") on its top edge, or just inside the box when there is no room
    above. Coordinates are clipped to the frame for drawing only. Detections
    below `min_confidence` are left out.
    """

    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array (RGB).")
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image_rgb.shape}")

    canvas = image_rgb.copy()
    height, width = canvas.shape[:2]

    for det in detections:
        if det.confidence < min_confidence:
            continue

        left, top, right, bottom = _pixel_box(det, width, height)
        color = SOURCE_COLORS.get(det.source, (255, 255, 0))
        cv2.rectangle(canvas, (left, top), (right, bottom), color, thickness=box_thickness)

        text = format_label(det)
        (text_w, text_h), baseline = cv2.getTextSize(text, FONT, font_scale, font_thickness)
        band_h = text_h + baseline
        band_top = top - band_h if top >= band_h else top
        _blend_rect(
            canvas,
            left,
            band_top,
            min(left + text_w + 10, width - 1),
            min(band_top + band_h, height - 1),
            color,
            label_alpha,
        )
        cv2.putText(
            canvas,
            text,
            (min(left + 5, width - 1), min(band_top + text_h, height - 1)),
            FONT,
            font_scale,
            TEXT_COLOR,
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return canvas
