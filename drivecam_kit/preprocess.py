from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np


IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class PreprocessConfig:
    input_size: Tuple[int, int] = (640, 640)
    mean: Tuple[float, float, float] = IMAGENET_MEAN
    std: Tuple[float, float, float] = IMAGENET_STD

    def __post_init__(self) -> None:
        if len(self.input_size) != 2 or min(self.input_size) < 1:
            raise ValueError("input_size must be (width, height) with positive values")
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ValueError("mean and std need one value per RGB channel")
        if any(s <= 0 for s in self.std):
            raise ValueError("std values must be > 0")


class Preprocessor:
    """
    RGB image -> normalized CHW float32 tensor.

    The image is stretched to `input_size` without letterboxing, so the aspect
    ratio of the source frame is not preserved. Decoded boxes are normalized
    to [0, 1] and map back onto the original frame by plain scaling.
    """

    def __init__(self, cfg: PreprocessConfig = PreprocessConfig()):
        self.cfg = cfg
        self._mean = np.asarray(cfg.mean, dtype=np.float32).reshape(3, 1, 1)
        self._std = np.asarray(cfg.std, dtype=np.float32).reshape(3, 1, 1)

    def prepare(self, image_rgb: np.ndarray) -> np.ndarray:
        if image_rgb is None or not hasattr(image_rgb, "shape"):
            raise TypeError("image_rgb must be a NumPy array (RGB).")
        if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_rgb, 'shape', None)}")

        new_w, new_h = self.cfg.input_size
        h, w = image_rgb.shape[:2]
        if (w, h) != (new_w, new_h):
            image_rgb = cv2.resize(image_rgb, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

        # HWC -> CHW, then per-channel (x / 255 - mean) / std
        chw = np.transpose(image_rgb, (2, 0, 1)).astype(np.float32) / 255.0
        tensor = np.ascontiguousarray((chw - self._mean) / self._std, dtype=np.float32)
        tensor.setflags(write=False)
        return tensor

    @staticmethod
    def batch(tensor: np.ndarray) -> np.ndarray:
        """Add the leading batch axis expected by the model backends."""
        if tensor.ndim == 3:
            return tensor[None, ...]
        return tensor
