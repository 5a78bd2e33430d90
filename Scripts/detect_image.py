import argparse
import logging
from pathlib import Path

import cv2
import numpy as np

from drivecam_kit import (
    ConverterConfig,
    DecoderConfig,
    NMSConfig,
    PixelPlaneBuffer,
    Plane,
    draw_detections,
    encode_yuv420,
    load_detector,
    load_detector_from_profile,
    load_detector_profile,
    setup_logging,
)


logger = logging.getLogger("detect_image")


def read_i420(path: str, width: int, height: int, rotation: float) -> PixelPlaneBuffer:
    """Wrap a raw planar I420 dump (Y, then U, then V) as a camera buffer."""

    data = np.fromfile(path, dtype=np.uint8)
    y_size = width * height
    cw, ch = width // 2, height // 2
    c_size = cw * ch
    if data.size < y_size + 2 * c_size:
        raise ValueError(f"{path} holds {data.size} bytes, expected {y_size + 2 * c_size} for {width}x{height}")
    return PixelPlaneBuffer(
        width=width,
        height=height,
        planes=(
            Plane(data[:y_size], width, height, row_stride=width),
            Plane(data[y_size : y_size + c_size], cw, ch, row_stride=cw),
            Plane(data[y_size + c_size : y_size + 2 * c_size], cw, ch, row_stride=cw),
        ),
        rotation_degrees=rotation,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the vehicle + sign detector on one frame and draw the overlay.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image (converted to YUV 4:2:0 first).")
    src.add_argument("--i420", default=None, help="Path to a raw I420 frame dump (needs --width/--height).")
    parser.add_argument("--width", type=int, default=0, help="Frame width for --i420.")
    parser.add_argument("--height", type=int, default=0, help="Frame height for --i420.")
    parser.add_argument("--rotation", type=float, default=0.0, help="Clockwise sensor rotation in degrees.")

    parser.add_argument("--profile", default=None, help="Detector profile JSON (overrides model/threshold flags).")
    parser.add_argument("--vehicle-model", default="models/vehicle_model.ptl", help="Vehicle model (.ptl/.pt/.onnx).")
    parser.add_argument("--sign-model", default="models/sign_model.ptl", help="Sign model (.ptl/.pt/.onnx).")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument("--conf", type=float, default=0.45, help="Objectness threshold.")
    parser.add_argument("--iou", type=float, default=0.5, help="IoU threshold for NMS.")
    parser.add_argument("--jpeg", action="store_true", help="Pass the converted frame through a JPEG round trip.")

    parser.add_argument("--out", default=None, help="Optional output image path for the overlay.")
    parser.add_argument("--show", action="store_true", help="Show a window with the overlay.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument("--log-path", default=None, help="Optional log file.")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_path)

    display_threshold = args.conf
    if args.profile:
        profile_path = Path(args.profile)
        profile = load_detector_profile(profile_path)
        detector = load_detector_from_profile(profile, root=profile_path.resolve().parent)
        display_threshold = profile.overlay_threshold
    else:
        detector = load_detector(
            args.vehicle_model,
            args.sign_model,
            backend=args.backend,
            vehicle_cfg=DecoderConfig.vehicle(confidence_threshold=args.conf),
            sign_cfg=DecoderConfig.sign(confidence_threshold=args.conf),
            nms_cfg=NMSConfig(iou_threshold=args.iou),
            converter_cfg=ConverterConfig(jpeg_roundtrip=bool(args.jpeg)),
        )

    if args.image is not None:
        bgr = cv2.imread(args.image)
        if bgr is None:
            raise FileNotFoundError(f"Could not read image at path: {args.image}")
        buffer = encode_yuv420(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB), rotation_degrees=args.rotation)
    else:
        if args.width < 2 or args.height < 2:
            raise ValueError("--width and --height are required for --i420")
        buffer = read_i420(args.i420, args.width, args.height, args.rotation)

    with detector:
        frame_rgb = detector.converter.convert(buffer)
        detections = detector.detect_image(frame_rgb)

    for det in detections:
        print(det.source.value, det.label, f"{det.confidence:.3f}", tuple(round(v, 4) for v in det.as_ltrb()))
    logger.info("%d detections", len(detections))

    if args.out or args.show:
        vis = cv2.cvtColor(draw_detections(frame_rgb, detections, min_confidence=display_threshold), cv2.COLOR_RGB2BGR)
        if args.out:
            ok = cv2.imwrite(args.out, vis)
            if not ok:
                raise RuntimeError(f"Failed to write output image: {args.out}")
        if args.show:
            cv2.imshow("detections", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
