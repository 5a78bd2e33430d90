"""
Conversion of strided 4:2:0 camera planes into interleaved RGB images.

Camera frames arrive as three sample planes (Y, U, V) whose rows and samples
may be padded: `row_stride` is the byte distance between rows and
`pixel_stride` the distance between samples of one row (2 for semi-planar
chroma). Conversion happens in two steps:

1. `pack_nv21` gathers the samples into a tightly packed NV21 layout
   (all luma, then chroma pairs V, U per 2x2 block).
2. The packed frame is expanded to full-range BT.601 YCrCb and converted to
   RGB with OpenCV, which is what a JPEG encode/decode of the NV21 frame
   would produce minus the compression loss.

Reads that fall past the end of a plane yield 0; cameras routinely deliver
planes whose last row is shorter than `row_stride`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import FormatError


logger = logging.getLogger(__name__)

YUV_420_888 = "YUV_420_888"


@dataclass(frozen=True)
class Plane:
    """One sample plane: raw bytes plus its logical geometry."""

    data: Any
    width: int
    height: int
    row_stride: int
    pixel_stride: int = 1

    def samples(self) -> np.ndarray:
        if isinstance(self.data, np.ndarray):
            if self.data.dtype != np.uint8:
                raise FormatError(f"Plane data must be uint8, got {self.data.dtype}")
            return self.data.reshape(-1)
        return np.frombuffer(self.data, dtype=np.uint8)

    @property
    def capacity(self) -> int:
        return int(self.samples().size)


@dataclass(frozen=True)
class PixelPlaneBuffer:
    """
    A camera frame as delivered by the frame source.

    `planes` is (Y, U, V). `rotation_degrees` is the clockwise rotation needed
    to display the frame upright.
    """

    width: int
    height: int
    planes: Sequence[Plane]
    rotation_degrees: float = 0
    pixel_format: str = YUV_420_888

    @property
    def luma(self) -> Plane:
        return self.planes[0]

    @property
    def chroma_u(self) -> Plane:
        return self.planes[1]

    @property
    def chroma_v(self) -> Plane:
        return self.planes[2]

    @property
    def chroma_size(self) -> Tuple[int, int]:
        return self.width // 2, self.height // 2


@dataclass(frozen=True)
class ConverterConfig:
    """
    - jpeg_roundtrip: pass the RGB result through a JPEG encode/decode, as the
      camera app did before handing frames to the models
    - jpeg_quality: JPEG quality used for the round trip
    - apply_rotation: honour `PixelPlaneBuffer.rotation_degrees`
    """

    jpeg_roundtrip: bool = False
    jpeg_quality: int = 100
    apply_rotation: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be in [1, 100]")


def validate_buffer(buffer: PixelPlaneBuffer) -> None:
    if buffer.pixel_format != YUV_420_888:
        raise FormatError(f"Unsupported pixel format: {buffer.pixel_format!r}")
    if len(buffer.planes) != 3:
        raise FormatError(f"Expected 3 planes (Y, U, V), got {len(buffer.planes)}")
    if buffer.width <= 0 or buffer.height <= 0:
        raise FormatError(f"Invalid frame size {buffer.width}x{buffer.height}")

    luma = buffer.luma
    if (luma.width, luma.height) != (buffer.width, buffer.height):
        raise FormatError(
            f"Luma plane is {luma.width}x{luma.height}, frame is {buffer.width}x{buffer.height}"
        )

    chroma_w, chroma_h = buffer.chroma_size
    for name, plane in (("U", buffer.chroma_u), ("V", buffer.chroma_v)):
        if (plane.width, plane.height) != (chroma_w, chroma_h):
            raise FormatError(
                f"{name} plane is {plane.width}x{plane.height}, expected {chroma_w}x{chroma_h} for 4:2:0"
            )

    for name, plane in (("Y", luma), ("U", buffer.chroma_u), ("V", buffer.chroma_v)):
        if plane.row_stride < 1 or plane.pixel_stride < 1:
            raise FormatError(
                f"{name} plane strides must be >= 1 (row_stride={plane.row_stride}, "
                f"pixel_stride={plane.pixel_stride})"
            )


def gather_plane(samples: np.ndarray, rows: int, cols: int, row_stride: int, pixel_stride: int) -> np.ndarray:
    """
    Read a (rows, cols) grid of samples at `r * row_stride + c * pixel_stride`.

    Offsets at or past `samples.size` are left as 0.
    """

    out = np.zeros((rows, cols), dtype=np.uint8)
    if rows == 0 or cols == 0:
        return out

    offsets = (
        np.arange(rows, dtype=np.int64)[:, None] * row_stride
        + np.arange(cols, dtype=np.int64)[None, :] * pixel_stride
    )
    valid = offsets < samples.size
    out[valid] = samples[offsets[valid]]
    return out


def pack_nv21(buffer: PixelPlaneBuffer) -> np.ndarray:
    """
    Pack a YUV_420_888 buffer into a flat NV21 byte array.

    Layout: `width * height` luma bytes, then for each chroma block in
    row-major order the V sample followed by the U sample.
    """

    validate_buffer(buffer)

    luma = buffer.luma
    y = gather_plane(luma.samples(), buffer.height, buffer.width, luma.row_stride, luma.pixel_stride)

    chroma_w, chroma_h = buffer.chroma_size
    u_plane, v_plane = buffer.chroma_u, buffer.chroma_v
    vu = np.empty((chroma_h, chroma_w, 2), dtype=np.uint8)
    vu[..., 0] = gather_plane(v_plane.samples(), chroma_h, chroma_w, v_plane.row_stride, v_plane.pixel_stride)
    vu[..., 1] = gather_plane(u_plane.samples(), chroma_h, chroma_w, u_plane.row_stride, u_plane.pixel_stride)

    return np.concatenate([y.reshape(-1), vu.reshape(-1)])


def split_nv21(packed: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Return (Y as (H, W), VU as (H // 2, W // 2, 2)) views of a packed NV21 array."""

    luma_size = width * height
    chroma_w, chroma_h = width // 2, height // 2
    expected = luma_size + 2 * chroma_w * chroma_h
    if packed.size != expected:
        raise FormatError(f"Packed NV21 size {packed.size} does not match {width}x{height} (expected {expected})")
    y = packed[:luma_size].reshape(height, width)
    vu = packed[luma_size:].reshape(chroma_h, chroma_w, 2)
    return y, vu


def _upsample_chroma(chroma: np.ndarray, height: int, width: int) -> np.ndarray:
    if chroma.size == 0:
        # 1-pixel wide or tall frames carry no chroma; treat as neutral grey.
        return np.full((height, width), 128, dtype=np.uint8)
    up = np.repeat(np.repeat(chroma, 2, axis=0), 2, axis=1)
    pad_h = height - up.shape[0]
    pad_w = width - up.shape[1]
    if pad_h or pad_w:
        up = np.pad(up, ((0, pad_h), (0, pad_w)), mode="edge")
    return up


def nv21_to_rgb(packed: np.ndarray, width: int, height: int) -> np.ndarray:
    y, vu = split_nv21(packed, width, height)
    cr = _upsample_chroma(vu[..., 0], height, width)
    cb = _upsample_chroma(vu[..., 1], height, width)
    ycrcb = np.ascontiguousarray(np.dstack([y, cr, cb]))
    return cv2.cvtColor(ycrcb, cv2.COLOR_YCrCb2RGB)


def jpeg_roundtrip(image_rgb: np.ndarray, quality: int = 100) -> np.ndarray:
    bgr = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)
    ok, encoded = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("JPEG encoding failed")
    decoded = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
    if decoded is None:
        raise RuntimeError("JPEG decoding failed")
    return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)


def rotate_image(image: np.ndarray, degrees: float) -> np.ndarray:
    """
    Rotate clockwise by `degrees`.

    Right angles are exact (no resampling). Other angles are resampled onto a
    canvas large enough to hold the whole rotated frame, filled with black.
    """

    deg = float(degrees) % 360.0
    if deg == 0.0:
        return image
    if deg == 90.0:
        return cv2.rotate(image, cv2.ROTATE_90_CLOCKWISE)
    if deg == 180.0:
        return cv2.rotate(image, cv2.ROTATE_180)
    if deg == 270.0:
        return cv2.rotate(image, cv2.ROTATE_90_COUNTERCLOCKWISE)

    h, w = image.shape[:2]
    center = (w / 2.0, h / 2.0)
    # OpenCV angles are counter-clockwise.
    m = cv2.getRotationMatrix2D(center, -deg, 1.0)
    cos, sin = abs(m[0, 0]), abs(m[0, 1])
    new_w = max(1, int(round(h * sin + w * cos)))
    new_h = max(1, int(round(h * cos + w * sin)))
    m[0, 2] += new_w / 2.0 - center[0]
    m[1, 2] += new_h / 2.0 - center[1]
    return cv2.warpAffine(
        image,
        m,
        (new_w, new_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0),
    )


class PlaneConverter:
    """Stateless YUV_420_888 -> RGB converter."""

    def __init__(self, cfg: ConverterConfig = ConverterConfig()):
        self.cfg = cfg

    def convert(self, buffer: PixelPlaneBuffer) -> np.ndarray:
        """
        Convert `buffer` into a contiguous (H, W, 3) uint8 RGB image.

        Raises:
            FormatError: the buffer is not a valid 4:2:0 three-plane frame.
        """

        packed = pack_nv21(buffer)
        rgb = nv21_to_rgb(packed, buffer.width, buffer.height)

        if self.cfg.jpeg_roundtrip:
            rgb = jpeg_roundtrip(rgb, self.cfg.jpeg_quality)

        if self.cfg.apply_rotation and buffer.rotation_degrees:
            rgb = rotate_image(rgb, buffer.rotation_degrees)

        return np.ascontiguousarray(rgb)

    def try_convert(self, buffer: PixelPlaneBuffer) -> Optional[np.ndarray]:
        try:
            return self.convert(buffer)
        except FormatError as exc:
            logger.warning("Dropping frame with invalid plane layout: %s", exc)
            return None


def encode_yuv420(image_rgb: np.ndarray, rotation_degrees: float = 0) -> PixelPlaneBuffer:
    """
    Build a tightly packed YUV_420_888 buffer from an RGB image.

    Uses the same full-range YCrCb transform as the converter, with chroma
    averaged over each 2x2 block. Intended for offline input (image files,
    tests) where no camera buffer exists.
    """

    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image_rgb.shape}")
    h, w = image_rgb.shape[:2]
    if h < 2 or w < 2:
        raise ValueError(f"Image must be at least 2x2, got {w}x{h}")

    ycrcb = cv2.cvtColor(np.ascontiguousarray(image_rgb, dtype=np.uint8), cv2.COLOR_RGB2YCrCb)
    cw, ch = w // 2, h // 2
    # Drop the odd trailing row/column so each chroma sample covers a full 2x2 block.
    crcb = np.ascontiguousarray(ycrcb[: ch * 2, : cw * 2, 1:])
    chroma = cv2.resize(crcb, (cw, ch), interpolation=cv2.INTER_AREA)

    y = np.ascontiguousarray(ycrcb[..., 0])
    v = np.ascontiguousarray(chroma[..., 0])
    u = np.ascontiguousarray(chroma[..., 1])
    return PixelPlaneBuffer(
        width=w,
        height=h,
        planes=(
            Plane(y.reshape(-1), w, h, row_stride=w),
            Plane(u.reshape(-1), cw, ch, row_stride=cw),
            Plane(v.reshape(-1), cw, ch, row_stride=cw),
        ),
        rotation_degrees=rotation_degrees,
    )
