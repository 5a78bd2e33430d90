from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .metadata import load_class_names
from .postprocess import CONFIDENCE_THRESHOLD, SIGN_CLASSES, VEHICLE_CLASSES, DecoderConfig


@dataclass(frozen=True)
class DetectorProfile:
    """
    Deployment settings for one vehicle + sign model pair.

    `confidence_threshold` is the single gate applied when decoding model
    rows. `display_threshold` only affects the overlay and defaults to the
    same value.
    """

    schema_version: int
    vehicle_model: str
    sign_model: str
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    iou_threshold: float = 0.5
    display_threshold: Optional[float] = None
    vehicle_classes: Tuple[str, ...] = VEHICLE_CLASSES
    sign_classes: Tuple[str, ...] = SIGN_CLASSES
    jpeg_roundtrip: bool = False
    parallel: bool = False
    backend: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detector profile schema_version must be 1")
        if not self.vehicle_model:
            raise ValueError("vehicle_model must be a non-empty path")
        if not self.sign_model:
            raise ValueError("sign_model must be a non-empty path")
        if not 0.0 <= self.confidence_threshold < 1.0:
            raise ValueError("confidence_threshold must be in [0, 1)")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.display_threshold is not None and not 0.0 <= self.display_threshold <= 1.0:
            raise ValueError("display_threshold must be in [0, 1]")
        if not self.vehicle_classes:
            raise ValueError("vehicle_classes must not be empty")
        if not self.sign_classes:
            raise ValueError("sign_classes must not be empty")
        if self.backend is not None and self.backend not in ("onnxruntime", "torchscript"):
            raise ValueError("backend must be 'onnxruntime' or 'torchscript'")

    @property
    def overlay_threshold(self) -> float:
        if self.display_threshold is None:
            return self.confidence_threshold
        return self.display_threshold

    def vehicle_decoder(self) -> DecoderConfig:
        return DecoderConfig.vehicle(self.vehicle_classes, confidence_threshold=self.confidence_threshold)

    def sign_decoder(self) -> DecoderConfig:
        return DecoderConfig.sign(self.sign_classes, confidence_threshold=self.confidence_threshold)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_number(payload: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_bool(payload: Dict[str, Any], key: str) -> bool:
    value = payload.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value


def _class_table(payload: Dict[str, Any], key: str, default: Sequence[str], base_dir: Path) -> Tuple[str, ...]:
    """A class table is either an inline list of names or a path to a `names:` metadata file."""

    value = payload.get(key)
    if value is None:
        return tuple(default)
    if isinstance(value, str):
        path = Path(value)
        if not path.is_absolute():
            path = base_dir / path
        if not path.exists():
            raise FileNotFoundError(f"{key} metadata not found: {path}")
        return load_class_names(path)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ValueError(f"{key} must be a list of strings or a metadata path")


def load_detector_profile(path: Path) -> DetectorProfile:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector profile must be a JSON object")

    allowed = {
        "schema_version",
        "vehicle_model",
        "sign_model",
        "confidence_threshold",
        "iou_threshold",
        "display_threshold",
        "vehicle_classes",
        "sign_classes",
        "jpeg_roundtrip",
        "parallel",
        "backend",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector profile keys: {unknown}")

    backend = payload.get("backend")
    if backend is not None and not isinstance(backend, str):
        raise ValueError("backend must be a string if provided")
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    base_dir = path.resolve().parent
    return DetectorProfile(
        schema_version=_require_int(payload, "schema_version"),
        vehicle_model=_require_str(payload, "vehicle_model"),
        sign_model=_require_str(payload, "sign_model"),
        confidence_threshold=_optional_number(payload, "confidence_threshold", CONFIDENCE_THRESHOLD),
        iou_threshold=_optional_number(payload, "iou_threshold", 0.5),
        display_threshold=_optional_number(payload, "display_threshold", None),
        vehicle_classes=_class_table(payload, "vehicle_classes", VEHICLE_CLASSES, base_dir),
        sign_classes=_class_table(payload, "sign_classes", SIGN_CLASSES, base_dir),
        jpeg_roundtrip=_optional_bool(payload, "jpeg_roundtrip"),
        parallel=_optional_bool(payload, "parallel"),
        backend=backend,
        notes=notes,
    )
