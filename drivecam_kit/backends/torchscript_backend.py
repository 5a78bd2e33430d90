from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

import numpy as np

from ..preprocess import Preprocessor


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

LITE_SUFFIX = ".ptl"


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    - device: torch device string for full TorchScript models ("cpu", "cuda:0")
    - output_index: element to keep when the model returns a tuple
    """

    device: str = "cpu"
    output_index: int = 0


def _load_module(torch: Any, path: Path, device: Any) -> Any:
    if path.suffix.lower() == LITE_SUFFIX:
        # Mobile exports only load through the lite interpreter and run on CPU.
        from torch.jit.mobile import _load_for_lite_interpreter  # type: ignore

        return _load_for_lite_interpreter(str(path))
    module = torch.jit.load(str(path), map_location=device)
    module.eval()
    return module


class TorchScriptBackend:
    """Runs a TorchScript (`.pt`, `.torchscript`) or PyTorch Mobile (`.ptl`) detection model."""

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError("TorchScript models need torch: `pip install drivecam-kit[torch]`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.is_file():
            raise FileNotFoundError(f"TorchScript model not found: {self.model_path}")

        self.lite = self.model_path.suffix.lower() == LITE_SUFFIX
        self.device = torch.device("cpu" if self.lite else cfg.device)
        self.output_index = cfg.output_index
        self.module = _load_module(torch, self.model_path, self.device)
        logger.info(
            "TorchScript model %s ready on %s%s", self.model_path.name, self.device, " (lite)" if self.lite else ""
        )

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        torch = self._torch
        # np.array copies; torch.from_numpy refuses read-only arrays.
        x = torch.from_numpy(np.array(Preprocessor.batch(tensor), dtype=np.float32)).to(self.device)

        with torch.no_grad():
            y = self.module(x)

        if isinstance(y, (tuple, list)):
            y = y[self.output_index]
        return y.detach().float().cpu().numpy()

    __call__ = infer
