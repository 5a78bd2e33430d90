from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..preprocess import Preprocessor


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    - providers: execution providers in priority order; ORT picks its default when None
    - intra_op_threads: threads per operator, 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    """Runs one exported detection model through an `onnxruntime.InferenceSession`."""

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError("ONNX models need onnxruntime: `pip install drivecam-kit[onnx]`.") from e

        self.model_path = Path(model_path)
        if not self.model_path.is_file():
            raise FileNotFoundError(f"ONNX model not found: {self.model_path}")

        options = ort.SessionOptions()
        if cfg.intra_op_threads > 0:
            options.intra_op_num_threads = cfg.intra_op_threads
        self.session = ort.InferenceSession(
            str(self.model_path),
            sess_options=options,
            providers=list(cfg.providers) if cfg.providers is not None else None,
        )

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        self.input_shape: Tuple = tuple(model_input.shape)
        self.output_name = self.session.get_outputs()[0].name
        logger.info(
            "ONNX model %s ready: %s%s -> %s via %s",
            self.model_path.name,
            self.input_name,
            list(self.input_shape),
            self.output_name,
            ",".join(self.session.get_providers()),
        )

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run a (3, H, W) or (1, 3, H, W) tensor and return the first output."""

        blob = np.ascontiguousarray(Preprocessor.batch(tensor), dtype=np.float32)
        (raw,) = self.session.run([self.output_name], {self.input_name: blob})
        return raw

    __call__ = infer
