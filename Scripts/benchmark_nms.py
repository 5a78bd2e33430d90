from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from typing import List

import numpy as np
from tqdm import tqdm

from drivecam_kit import (
    DecoderConfig,
    DetectionDecoder,
    NMSConfig,
    PlaneConverter,
    Suppressor,
    encode_yuv420,
)


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def _summarize_ms(values_s: List[float]) -> TimingSummary:
    ms_sorted = sorted(v * 1000.0 for v in values_s)
    return TimingSummary(
        n=len(ms_sorted),
        mean_ms=float(statistics.fmean(ms_sorted)) if ms_sorted else 0.0,
        p50_ms=_percentile(ms_sorted, 50.0) if ms_sorted else 0.0,
        p90_ms=_percentile(ms_sorted, 90.0) if ms_sorted else 0.0,
        p95_ms=_percentile(ms_sorted, 95.0) if ms_sorted else 0.0,
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def synthetic_output(cfg: DecoderConfig, cells: int, positive_ratio: float, rng: np.random.Generator) -> np.ndarray:
    """Raw `cells * dimensions` output with clustered boxes so NMS has work to do."""

    rows = np.zeros((cells, cfg.dimensions), dtype=np.float32)
    centers = rng.uniform(40, 600, size=(max(1, cells // 20), 2))
    picks = rng.integers(0, centers.shape[0], size=cells)
    rows[:, 0:2] = centers[picks] + rng.normal(0, 6, size=(cells, 2))
    rows[:, 2:4] = rng.uniform(20, 120, size=(cells, 2))
    positive = rng.uniform(0, 1, size=cells) < positive_ratio
    rows[:, 4] = np.where(positive, rng.uniform(0.46, 1.05, size=cells), rng.uniform(0.0, 0.44, size=cells))
    rows[:, 5:] = rng.uniform(0, 1, size=(cells, cfg.dimensions - 5))
    return rows.reshape(-1)


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark frame conversion, decoding and NMS on synthetic data.")
    parser.add_argument("--cells", type=int, default=25200, help="Rows per model output (YOLOv5 640 = 25200).")
    parser.add_argument("--positive-ratio", type=float, default=0.002, help="Fraction of rows above the gate.")
    parser.add_argument("--iou", type=float, default=0.5, help="IoU threshold for NMS.")
    parser.add_argument("--width", type=int, default=640, help="Synthetic camera frame width.")
    parser.add_argument("--height", type=int, default=480, help="Synthetic camera frame height.")
    parser.add_argument("--warmup", type=int, default=10, help="Iterations to run but not record.")
    parser.add_argument("--iterations", type=int, default=200, help="Recorded iterations.")
    args = parser.parse_args()

    if args.cells < 1:
        raise ValueError("--cells must be >= 1")
    if not 0.0 <= args.positive_ratio <= 1.0:
        raise ValueError("--positive-ratio must be in [0, 1]")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.iterations < 1:
        raise ValueError("--iterations must be >= 1")

    rng = np.random.default_rng(0)
    vehicle_cfg = DecoderConfig.vehicle()
    sign_cfg = DecoderConfig.sign()
    decoders = [DetectionDecoder(vehicle_cfg), DetectionDecoder(sign_cfg)]
    outputs = [
        synthetic_output(vehicle_cfg, args.cells, args.positive_ratio, rng),
        synthetic_output(sign_cfg, args.cells, args.positive_ratio, rng),
    ]
    suppressor = Suppressor(NMSConfig(iou_threshold=args.iou))

    frame = rng.integers(0, 256, size=(args.height, args.width, 3), dtype=np.uint8)
    buffer = encode_yuv420(frame)
    converter = PlaneConverter()

    t_convert: List[float] = []
    t_decode: List[float] = []
    t_nms: List[float] = []
    kept_counts: List[int] = []
    candidate_counts: List[int] = []

    for it in tqdm(range(args.warmup + args.iterations), unit="it"):
        t0 = time.perf_counter()
        converter.convert(buffer)
        t1 = time.perf_counter()
        candidates = [decoder.decode(out) for decoder, out in zip(decoders, outputs)]
        t2 = time.perf_counter()
        kept = [suppressor.suppress(c) for c in candidates]
        t3 = time.perf_counter()

        if it < args.warmup:
            continue
        t_convert.append(t1 - t0)
        t_decode.append(t2 - t1)
        t_nms.append(t3 - t2)
        candidate_counts.append(sum(len(c) for c in candidates))
        kept_counts.append(sum(len(k) for k in kept))

    print(_format_summary("convert", _summarize_ms(t_convert)))
    print(_format_summary("decode_x2", _summarize_ms(t_decode)))
    print(_format_summary("nms_x2", _summarize_ms(t_nms)))
    print(
        f"candidates_per_frame={statistics.fmean(candidate_counts):.1f} "
        f"kept_per_frame={statistics.fmean(kept_counts):.1f} iterations={len(t_nms)}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
