"""
Frame decoding and dual-model detection post-processing.

Turns a strided YUV_420_888 camera frame into an RGB image and a normalized
tensor, runs a vehicle model and a sign model, and reduces their raw per-cell
outputs to labeled, non-overlapping boxes in normalized coordinates.

Core functionality depends only on NumPy and OpenCV. Inference runtimes
(onnxruntime, torch) are imported lazily by the backends.
"""

from .types import Candidate, Detection, DetectionSource
from .errors import FormatError, InferenceError
from .planes import ConverterConfig, PixelPlaneBuffer, Plane, PlaneConverter, encode_yuv420, pack_nv21, rotate_image
from .preprocess import PreprocessConfig, Preprocessor
from .postprocess import SIGN_DECODER, VEHICLE_DECODER, DecoderConfig, DetectionDecoder, decode
from .nms import NMSConfig, Suppressor, box_iou, nms
from .fusion import fuse
from .runtime import (
    DualDetector,
    LatestFrameGate,
    SourceModel,
    find_project_root,
    load_detector,
    load_detector_from_profile,
    resolve_path,
    unwrap_model_output,
)
from .metadata import load_class_names
from .profile import DetectorProfile, load_detector_profile
from .visualize import draw_detections
from .logs import setup_logging

__all__ = [
    "Candidate",
    "Detection",
    "DetectionSource",
    "FormatError",
    "InferenceError",
    "ConverterConfig",
    "PixelPlaneBuffer",
    "Plane",
    "PlaneConverter",
    "encode_yuv420",
    "pack_nv21",
    "rotate_image",
    "PreprocessConfig",
    "Preprocessor",
    "SIGN_DECODER",
    "VEHICLE_DECODER",
    "DecoderConfig",
    "DetectionDecoder",
    "decode",
    "NMSConfig",
    "Suppressor",
    "box_iou",
    "nms",
    "fuse",
    "DualDetector",
    "LatestFrameGate",
    "SourceModel",
    "find_project_root",
    "load_detector",
    "load_detector_from_profile",
    "resolve_path",
    "unwrap_model_output",
    "load_class_names",
    "DetectorProfile",
    "load_detector_profile",
    "draw_detections",
    "setup_logging",
]
