from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .types import Detection, DetectionSource


Box = Tuple[float, float, float, float]


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.5
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")


def box_iou(a: Box, b: Box) -> float:
    """
    IoU of two (left, top, right, bottom) boxes.

    Disjoint boxes give 0. Degenerate pairs whose union has no area give 0
    instead of dividing by zero.
    """

    il = max(a[0], b[0])
    it = max(a[1], b[1])
    ir = min(a[2], b[2])
    ib = min(a[3], b[3])
    if ir < il or ib < it:
        return 0.0

    inter = (ir - il) * (ib - it)
    area_a = (a[2] - a[0]) * (a[3] - a[1])
    area_b = (b[2] - b[0]) * (b[3] - b[1])
    union = area_a + area_b - inter
    if union <= 0.0:
        return 0.0
    return float(inter / union)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NMS. Expects boxes shape (N,4) in ltrb and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Equal scores keep their input order. A box is dropped when its IoU with an
    already kept box is strictly greater than `cfg.iou_threshold`.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(int(i))
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        overlap = (xx2 >= xx1) & (yy2 >= yy1)
        inter = np.where(overlap, (xx2 - xx1) * (yy2 - yy1), 0.0)
        union = areas[i] + areas[rest] - inter
        iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0.0)

        order = rest[iou <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


class Suppressor:
    """
    Per-source non-maximum suppression over decoded candidates.

    Vehicle and sign candidates are suppressed independently; boxes from
    different sources never remove each other. The result lists each source's
    survivors in descending confidence, sources in order of first appearance.
    """

    def __init__(self, cfg: NMSConfig = NMSConfig()):
        self.cfg = cfg

    def suppress(self, candidates: Iterable[Detection]) -> List[Detection]:
        groups: Dict[DetectionSource, List[Detection]] = {}
        for det in candidates:
            groups.setdefault(det.source, []).append(det)

        out: List[Detection] = []
        for group in groups.values():
            out.extend(self._suppress_group(group))
        return out

    def _suppress_group(self, group: Sequence[Detection]) -> List[Detection]:
        if not group:
            return []
        boxes = np.array([d.as_ltrb() for d in group], dtype=np.float64)
        scores = np.array([d.confidence for d in group], dtype=np.float64)
        keep = nms(boxes, scores, self.cfg)
        return [group[i] for i in keep]
