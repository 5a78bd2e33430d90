from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np

from .types import Detection, DetectionSource


VEHICLE_CLASSES = ("car", "motorcycle", "bus", "truck")
SIGN_CLASSES = ("crossing", "near_crossing", "crossing_ahead")

# Vehicle model is a COCO-shaped head: 4 box + 1 objectness + 80 class slots.
VEHICLE_DIMENSIONS = 85
INPUT_SIZE = 640
CONFIDENCE_THRESHOLD = 0.45


@dataclass(frozen=True)
class DecoderConfig:
    """
    Configuration for decoding one model's flat output.

    Each row of the output is `[cx, cy, w, h, objectness, class_scores...]`
    with box values in input-tensor pixels. `dimensions` is the row length.
    """

    source: DetectionSource
    class_names: Sequence[str]
    dimensions: int
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    input_size: float = INPUT_SIZE
    fallback_label: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", DetectionSource(self.source))
        object.__setattr__(self, "class_names", tuple(self.class_names))
        if self.dimensions < 5:
            raise ValueError("dimensions must be >= 5 (box + objectness)")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0, 1]")
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if self.fallback_label is None:
            object.__setattr__(self, "fallback_label", self.source.value)

    def label_for(self, class_id: int) -> str:
        if 0 <= class_id < len(self.class_names):
            return self.class_names[class_id]
        return self.fallback_label  # type: ignore[return-value]

    @classmethod
    def vehicle(cls, class_names: Sequence[str] = VEHICLE_CLASSES, **kwargs: Any) -> "DecoderConfig":
        return cls(
            source=DetectionSource.VEHICLE,
            class_names=class_names,
            dimensions=VEHICLE_DIMENSIONS,
            **kwargs,
        )

    @classmethod
    def sign(cls, class_names: Sequence[str] = SIGN_CLASSES, **kwargs: Any) -> "DecoderConfig":
        return cls(
            source=DetectionSource.SIGN,
            class_names=class_names,
            dimensions=5 + len(class_names),
            **kwargs,
        )

    @classmethod
    def for_source(
        cls, source: DetectionSource, class_names: Optional[Sequence[str]] = None, **kwargs: Any
    ) -> "DecoderConfig":
        source = DetectionSource(source)
        factory = cls.vehicle if source is DetectionSource.VEHICLE else cls.sign
        if class_names is None:
            return factory(**kwargs)
        return factory(class_names, **kwargs)


VEHICLE_DECODER = DecoderConfig.vehicle()
SIGN_DECODER = DecoderConfig.sign()


def _select_classes(class_scores: np.ndarray) -> np.ndarray:
    """
    Per-row class index: first position of the row maximum.

    Rows whose best score is not positive map to class 0.
    """

    n = class_scores.shape[0]
    if class_scores.shape[1] == 0:
        return np.zeros((n,), dtype=np.int64)
    best = np.argmax(class_scores, axis=1)
    best_val = class_scores[np.arange(n), best]
    return np.where(best_val > 0, best, 0)


class DetectionDecoder:
    """
    Turns a raw `numCells * dimensions` float output into candidates.

    Rows are gated on objectness alone (strictly greater than the threshold);
    the selected class score only picks the label. Trailing values that do
    not fill a whole row are ignored. Output order follows the model rows.
    """

    def __init__(self, cfg: DecoderConfig):
        self.cfg = cfg

    def decode(self, outputs: Any) -> List[Detection]:
        cfg = self.cfg
        flat = np.asarray(outputs, dtype=np.float32).reshape(-1)
        dims = cfg.dimensions
        n_rows = flat.size // dims
        if n_rows == 0:
            return []

        rows = flat[: n_rows * dims].reshape(n_rows, dims)

        objectness = np.minimum(rows[:, 4], np.float32(1.0))
        keep = objectness > cfg.confidence_threshold
        if not np.any(keep):
            return []
        rows = rows[keep]
        objectness = objectness[keep]

        class_ids = _select_classes(rows[:, 5:])

        # cxcywh (input pixels) -> normalized ltrb
        cx, cy, w, h = (rows[:, i].astype(np.float64) for i in range(4))
        s = float(cfg.input_size)
        left = (cx - w / 2) / s
        top = (cy - h / 2) / s
        right = (cx + w / 2) / s
        bottom = (cy + h / 2) / s

        return [
            Detection(
                left=float(l),
                top=float(t),
                right=float(r),
                bottom=float(b),
                label=cfg.label_for(int(cls_id)),
                confidence=float(conf),
                source=cfg.source,
            )
            for l, t, r, b, cls_id, conf in zip(left, top, right, bottom, class_ids, objectness)
        ]


def decode(
    outputs: Any,
    dimensions: int,
    class_names: Sequence[str],
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
    source: DetectionSource = DetectionSource.VEHICLE,
) -> List[Detection]:
    """Functional form of `DetectionDecoder.decode`."""

    cfg = DecoderConfig(
        source=source,
        class_names=class_names,
        dimensions=dimensions,
        confidence_threshold=confidence_threshold,
    )
    return DetectionDecoder(cfg).decode(outputs)
