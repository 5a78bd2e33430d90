from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Union

import numpy as np

from .errors import InferenceError
from .fusion import fuse
from .nms import NMSConfig, Suppressor
from .planes import ConverterConfig, PixelPlaneBuffer, PlaneConverter
from .postprocess import DecoderConfig, DetectionDecoder
from .preprocess import PreprocessConfig, Preprocessor
from .types import Detection, DetectionSource

if TYPE_CHECKING:
    from .profile import DetectorProfile


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Any]


MODEL_ROOT_MARKERS = ("pyproject.toml", ".git", "models")


def find_project_root(start: Optional[PathLike] = None, markers: Sequence[str] = MODEL_ROOT_MARKERS) -> Path:
    """Walk up from `start` (default: cwd) to the first directory holding one of `markers`."""

    here = Path.cwd() if start is None else Path(start)
    here = here.resolve()
    if here.is_file():
        here = here.parent
    for candidate in (here, *here.parents):
        if any((candidate / marker).exists() for marker in markers):
            return candidate
    return here


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Make a model path absolute.

    Relative paths such as `models/sign_model.ptl` are taken relative to
    `root`; with `root="auto"` (or None) the project root is used.
    """

    target = Path(path)
    if target.is_absolute():
        return target
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / target).resolve()


def unwrap_model_output(raw: Any, dimensions: int) -> np.ndarray:
    """
    Normalize a model result into a flat float32 array.

    Models return either a tensor or a tuple whose first element is the
    tensor. Anything that does not hold at least one full row raises
    `InferenceError`.
    """

    if isinstance(raw, (tuple, list)):
        if not raw:
            raise InferenceError("Model returned an empty tuple")
        raw = raw[0]

    if hasattr(raw, "detach"):
        raw = raw.detach()
        if hasattr(raw, "cpu"):
            raw = raw.cpu()
        raw = raw.numpy()

    if not isinstance(raw, np.ndarray):
        raise InferenceError(f"Unexpected model output type: {type(raw).__name__}")
    if raw.dtype == np.bool_ or not np.issubdtype(raw.dtype, np.number):
        raise InferenceError(f"Unexpected model output dtype: {raw.dtype}")

    flat = raw.reshape(-1).astype(np.float32, copy=False)
    if flat.size < dimensions:
        raise InferenceError(f"Model output has {flat.size} values, less than one row of {dimensions}")
    return flat


@dataclass(frozen=True)
class SourceModel:
    """One detection source: an opaque model plus the decoder settings for its output."""

    infer_fn: InferFn
    decoder_cfg: DecoderConfig

    @property
    def source(self) -> DetectionSource:
        return self.decoder_cfg.source

    @property
    def name(self) -> str:
        return self.decoder_cfg.source.value


class DualDetector:
    """
    Frame pipeline: planes -> RGB -> tensor -> (vehicle, sign) -> NMS -> fused list.

    A failure in one model is logged and only removes that source's
    detections from the frame. Invalid camera buffers produce an empty list.
    Nothing is carried over between calls.
    """

    def __init__(
        self,
        vehicle: SourceModel,
        sign: SourceModel,
        *,
        converter: Optional[PlaneConverter] = None,
        preprocessor: Optional[Preprocessor] = None,
        nms_cfg: NMSConfig = NMSConfig(),
        parallel: bool = False,
    ):
        self.vehicle = vehicle
        self.sign = sign
        self.converter = converter or PlaneConverter()
        self.preprocessor = preprocessor or Preprocessor()
        self.suppressor = Suppressor(nms_cfg)
        self.parallel = parallel
        self._executor: Optional[ThreadPoolExecutor] = None

    def _run_source(self, model: SourceModel, tensor: np.ndarray) -> List[Detection]:
        try:
            raw = model.infer_fn(tensor)
            outputs = unwrap_model_output(raw, model.decoder_cfg.dimensions)
            candidates = DetectionDecoder(model.decoder_cfg).decode(outputs)
            return self.suppressor.suppress(candidates)
        except Exception:
            logger.exception("%s model failed, frame continues without its detections", model.name)
            return []

    def detect_tensor(self, tensor: np.ndarray) -> List[Detection]:
        if self.parallel:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="drivecam")
            vehicle_future = self._executor.submit(self._run_source, self.vehicle, tensor)
            sign_future = self._executor.submit(self._run_source, self.sign, tensor)
            return fuse(vehicle_future.result(), sign_future.result())

        return fuse(self._run_source(self.vehicle, tensor), self._run_source(self.sign, tensor))

    def detect_image(self, image_rgb: np.ndarray) -> List[Detection]:
        return self.detect_tensor(self.preprocessor.prepare(image_rgb))

    def process(self, buffer: PixelPlaneBuffer) -> List[Detection]:
        image = self.converter.try_convert(buffer)
        if image is None:
            return []
        return self.detect_image(image)

    __call__ = process

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "DualDetector":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class LatestFrameGate:
    """
    At-most-one in-flight frame in front of a detector.

    `offer` runs the detector if it is idle and returns the detections. If
    another frame is still being processed the new frame is dropped and
    `None` is returned; nothing is queued.
    """

    def __init__(self, detector: Callable[[PixelPlaneBuffer], List[Detection]]):
        self.detector = detector
        self._busy = threading.Lock()
        self._stats = threading.Lock()
        self.processed = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def offer(self, buffer: PixelPlaneBuffer) -> Optional[List[Detection]]:
        if not self._busy.acquire(blocking=False):
            with self._stats:
                self.dropped += 1
            logger.debug("Frame dropped, previous frame still in flight (dropped=%d)", self.dropped)
            return None
        try:
            return self.detector(buffer)
        finally:
            with self._stats:
                self.processed += 1
            self._busy.release()


def _infer_backend(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".ptl", ".pt", ".torchscript", ".ts"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_model(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> InferFn:
    resolved = resolve_path(model_path, root=root)
    chosen = (backend or _infer_backend(resolved)).lower()

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(resolved, OnnxRuntimeBackendConfig(providers=onnx_providers)).infer

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        return TorchScriptBackend(resolved, TorchScriptBackendConfig(device=torch_device)).infer

    raise ValueError(f"Unsupported backend: {backend!r}")


def load_detector(
    vehicle_model: PathLike,
    sign_model: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    vehicle_cfg: DecoderConfig = DecoderConfig.vehicle(),
    sign_cfg: DecoderConfig = DecoderConfig.sign(),
    nms_cfg: NMSConfig = NMSConfig(),
    converter_cfg: ConverterConfig = ConverterConfig(),
    preprocess_cfg: PreprocessConfig = PreprocessConfig(),
    parallel: bool = False,
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> DualDetector:
    """
    Create a detector for a vehicle model and a sign model on disk.

    Typical usage:
        detector = load_detector("models/vehicle_model.ptl", "models/sign_model.ptl")
        detections = detector(buffer)
    """

    logger.info("Loading vehicle model: %s", vehicle_model)
    vehicle_fn = load_model(
        vehicle_model, backend=backend, root=root, onnx_providers=onnx_providers, torch_device=torch_device
    )
    logger.info("Loading sign model: %s", sign_model)
    sign_fn = load_model(
        sign_model, backend=backend, root=root, onnx_providers=onnx_providers, torch_device=torch_device
    )

    return DualDetector(
        SourceModel(vehicle_fn, vehicle_cfg),
        SourceModel(sign_fn, sign_cfg),
        converter=PlaneConverter(converter_cfg),
        preprocessor=Preprocessor(preprocess_cfg),
        nms_cfg=nms_cfg,
        parallel=parallel,
    )


def load_detector_from_profile(profile: "DetectorProfile", root: Optional[PathLike] = "auto") -> DualDetector:
    return load_detector(
        profile.vehicle_model,
        profile.sign_model,
        backend=profile.backend,
        root=root,
        vehicle_cfg=profile.vehicle_decoder(),
        sign_cfg=profile.sign_decoder(),
        nms_cfg=NMSConfig(iou_threshold=profile.iou_threshold),
        converter_cfg=ConverterConfig(jpeg_roundtrip=profile.jpeg_roundtrip),
        parallel=profile.parallel,
    )
