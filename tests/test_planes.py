import unittest

import numpy as np

from drivecam_kit.errors import FormatError
from drivecam_kit.planes import (
    ConverterConfig,
    PixelPlaneBuffer,
    Plane,
    PlaneConverter,
    encode_yuv420,
    pack_nv21,
    rotate_image,
)


def _strided(values: np.ndarray, row_stride: int, pixel_stride: int, pad: int = 0xEE) -> np.ndarray:
    """Lay a (rows, cols) grid out in memory with the given strides, filling gaps with `pad`."""

    rows, cols = values.shape
    size = (rows - 1) * row_stride + (cols - 1) * pixel_stride + 1
    data = np.full((size,), pad, dtype=np.uint8)
    for r in range(rows):
        for c in range(cols):
            data[r * row_stride + c * pixel_stride] = values[r, c]
    return data


def _buffer(y: np.ndarray, u: np.ndarray, v: np.ndarray, *, y_row=None, y_px=1, c_row=None, c_px=1, rotation=0):
    h, w = y.shape
    ch, cw = u.shape
    y_row = y_row or w * y_px
    c_row = c_row or cw * c_px
    return PixelPlaneBuffer(
        width=w,
        height=h,
        planes=(
            Plane(_strided(y, y_row, y_px), w, h, y_row, y_px),
            Plane(_strided(u, c_row, c_px), cw, ch, c_row, c_px),
            Plane(_strided(v, c_row, c_px), cw, ch, c_row, c_px),
        ),
        rotation_degrees=rotation,
    )


def _uniform(width: int, height: int, y: int, u: int, v: int, rotation: float = 0) -> PixelPlaneBuffer:
    return _buffer(
        np.full((height, width), y, dtype=np.uint8),
        np.full((height // 2, width // 2), u, dtype=np.uint8),
        np.full((height // 2, width // 2), v, dtype=np.uint8),
        rotation=rotation,
    )


class TestPackNv21(unittest.TestCase):
    def test_tight_planes_exact_bytes(self) -> None:
        y = np.arange(16, dtype=np.uint8).reshape(4, 4)
        u = np.array([[100, 101], [102, 103]], dtype=np.uint8)
        v = np.array([[200, 201], [202, 203]], dtype=np.uint8)
        packed = pack_nv21(_buffer(y, u, v))
        expected = list(range(16)) + [200, 100, 201, 101, 202, 102, 203, 103]
        self.assertEqual(packed.tolist(), expected)

    def test_row_padding_is_skipped(self) -> None:
        y = np.arange(1, 13, dtype=np.uint8).reshape(3, 4)
        u = np.array([[10, 11]], dtype=np.uint8)
        v = np.array([[20, 21]], dtype=np.uint8)
        buf = _buffer(y, u, v, y_row=8, c_row=4)
        packed = pack_nv21(buf)
        self.assertEqual(packed.tolist(), list(range(1, 13)) + [20, 10, 21, 11])

    def test_semi_planar_chroma_sharing_memory(self) -> None:
        # Android-style: U and V are views into one interleaved UVUV... block,
        # with pixel_stride 2 and the V view starting one byte later.
        w, h = 4, 4
        y = np.zeros((h, w), dtype=np.uint8)
        uv = np.array([1, 2, 3, 4, 5, 6, 7, 8], dtype=np.uint8)  # u0 v0 u1 v1 / u2 v2 u3 v3
        buf = PixelPlaneBuffer(
            width=w,
            height=h,
            planes=(
                Plane(y.reshape(-1), w, h, row_stride=w),
                Plane(uv, 2, 2, row_stride=4, pixel_stride=2),
                Plane(uv[1:], 2, 2, row_stride=4, pixel_stride=2),
            ),
        )
        packed = pack_nv21(buf)
        self.assertEqual(packed[16:].tolist(), [2, 1, 4, 3, 6, 5, 8, 7])

    def test_reads_past_plane_end_are_zero(self) -> None:
        w, h = 4, 2
        data = np.array([1, 2, 3, 4, 0, 0, 0, 0, 5, 6, 7], dtype=np.uint8)  # last sample missing
        buf = PixelPlaneBuffer(
            width=w,
            height=h,
            planes=(
                Plane(data, w, h, row_stride=8),
                Plane(np.array([9, 9], dtype=np.uint8), 2, 1, row_stride=2),
                Plane(np.array([8], dtype=np.uint8), 2, 1, row_stride=2),
            ),
        )
        packed = pack_nv21(buf)
        self.assertEqual(packed[:8].tolist(), [1, 2, 3, 4, 5, 6, 7, 0])
        self.assertEqual(packed[8:].tolist(), [8, 9, 0, 9])

    def test_direct_indexing_matches_source(self) -> None:
        rng = np.random.default_rng(7)
        for pixel_stride in (1, 2):
            for w, h in ((2, 2), (6, 4), (5, 3), (7, 7), (16, 9)):
                y = rng.integers(0, 256, size=(h, w), dtype=np.uint8)
                u = rng.integers(0, 256, size=(h // 2, w // 2), dtype=np.uint8)
                v = rng.integers(0, 256, size=(h // 2, w // 2), dtype=np.uint8)
                buf = _buffer(y, u, v, y_px=pixel_stride, c_px=pixel_stride)
                packed = pack_nv21(buf)

                self.assertEqual(packed.size, w * h + 2 * (w // 2) * (h // 2))
                self.assertTrue(np.array_equal(packed[: w * h].reshape(h, w), y))
                vu = packed[w * h :].reshape(h // 2, w // 2, 2)
                self.assertTrue(np.array_equal(vu[..., 0], v))
                self.assertTrue(np.array_equal(vu[..., 1], u))

    def test_bytes_plane_data(self) -> None:
        buf = PixelPlaneBuffer(
            width=2,
            height=2,
            planes=(
                Plane(bytes([1, 2, 3, 4]), 2, 2, row_stride=2),
                Plane(bytearray([5]), 1, 1, row_stride=1),
                Plane(memoryview(bytes([6])), 1, 1, row_stride=1),
            ),
        )
        self.assertEqual(pack_nv21(buf).tolist(), [1, 2, 3, 4, 6, 5])


class TestFormatValidation(unittest.TestCase):
    def test_rejects_other_pixel_formats(self) -> None:
        good = _uniform(4, 4, 128, 128, 128)
        bad = PixelPlaneBuffer(good.width, good.height, good.planes, pixel_format="NV16")
        with self.assertRaises(FormatError):
            pack_nv21(bad)

    def test_rejects_wrong_chroma_size(self) -> None:
        y = np.zeros((4, 4), dtype=np.uint8)
        u = np.zeros((2, 3), dtype=np.uint8)
        buf = _buffer(y, u, u)
        with self.assertRaises(FormatError):
            pack_nv21(buf)

    def test_rejects_full_resolution_chroma(self) -> None:
        y = np.zeros((4, 4), dtype=np.uint8)
        buf = _buffer(y, y, y)
        with self.assertRaises(FormatError):
            PlaneConverter().convert(buf)

    def test_rejects_missing_plane(self) -> None:
        good = _uniform(4, 4, 128, 128, 128)
        with self.assertRaises(FormatError):
            pack_nv21(PixelPlaneBuffer(4, 4, good.planes[:2]))

    def test_rejects_zero_stride(self) -> None:
        good = _uniform(4, 4, 128, 128, 128)
        luma = good.luma
        planes = (Plane(luma.data, 4, 4, row_stride=0), good.chroma_u, good.chroma_v)
        with self.assertRaises(FormatError):
            pack_nv21(PixelPlaneBuffer(4, 4, planes))

    def test_try_convert_logs_and_returns_none(self) -> None:
        good = _uniform(4, 4, 128, 128, 128)
        bad = PixelPlaneBuffer(4, 4, good.planes, pixel_format="RGBA_8888")
        with self.assertLogs("drivecam_kit.planes", level="WARNING"):
            self.assertIsNone(PlaneConverter().try_convert(bad))


class TestPlaneConverter(unittest.TestCase):
    def test_neutral_grey(self) -> None:
        rgb = PlaneConverter().convert(_uniform(6, 4, 128, 128, 128))
        self.assertEqual(rgb.shape, (4, 6, 3))
        self.assertEqual(rgb.dtype, np.uint8)
        self.assertTrue(rgb.flags["C_CONTIGUOUS"])
        self.assertTrue(np.all(rgb == 128))

    def test_v_plane_drives_red_and_u_plane_drives_blue(self) -> None:
        red = PlaneConverter().convert(_uniform(4, 4, 76, u=85, v=255))
        self.assertGreater(int(red[0, 0, 0]), 200)
        self.assertLess(int(red[0, 0, 2]), 30)

        blue = PlaneConverter().convert(_uniform(4, 4, 76, u=255, v=85))
        self.assertGreater(int(blue[0, 0, 2]), 200)
        self.assertLess(int(blue[0, 0, 0]), 30)

    def test_chroma_block_covers_two_by_two(self) -> None:
        y = np.full((2, 4), 128, dtype=np.uint8)
        u = np.array([[128, 128]], dtype=np.uint8)
        v = np.array([[128, 255]], dtype=np.uint8)
        rgb = PlaneConverter().convert(_buffer(y, u, v))
        self.assertTrue(np.all(rgb[:, :2, 0] == 128))
        self.assertTrue(np.all(rgb[:, 2:, 0] == 255))

    def test_odd_dimensions_keep_every_row_and_column(self) -> None:
        rgb = PlaneConverter().convert(_uniform(5, 3, 128, 128, 128))
        self.assertEqual(rgb.shape, (3, 5, 3))
        self.assertTrue(np.all(rgb == 128))

    def test_single_pixel_frame(self) -> None:
        buf = PixelPlaneBuffer(
            width=1,
            height=1,
            planes=(
                Plane(np.array([90], dtype=np.uint8), 1, 1, row_stride=1),
                Plane(np.zeros((0,), dtype=np.uint8), 0, 0, row_stride=1),
                Plane(np.zeros((0,), dtype=np.uint8), 0, 0, row_stride=1),
            ),
        )
        rgb = PlaneConverter().convert(buf)
        self.assertEqual(rgb.tolist(), [[[90, 90, 90]]])

    def test_rotation_from_metadata(self) -> None:
        y = np.full((2, 4), 200, dtype=np.uint8)
        y[:, :2] = 50
        neutral = np.full((1, 2), 128, dtype=np.uint8)
        rgb = PlaneConverter().convert(_buffer(y, neutral, neutral, rotation=90))
        self.assertEqual(rgb.shape, (4, 2, 3))
        # Clockwise: the left columns become the top rows.
        self.assertTrue(np.all(rgb[:2, :, 0] == 50))
        self.assertTrue(np.all(rgb[2:, :, 0] == 200))

    def test_rotation_can_be_disabled(self) -> None:
        conv = PlaneConverter(ConverterConfig(apply_rotation=False))
        rgb = conv.convert(_uniform(4, 2, 128, 128, 128, rotation=90))
        self.assertEqual(rgb.shape, (2, 4, 3))

    def test_jpeg_roundtrip_is_close(self) -> None:
        conv = PlaneConverter(ConverterConfig(jpeg_roundtrip=True, jpeg_quality=95))
        rgb = conv.convert(_uniform(16, 16, 128, 128, 128))
        self.assertEqual(rgb.shape, (16, 16, 3))
        self.assertLessEqual(int(np.abs(rgb.astype(int) - 128).max()), 2)

    def test_invalid_jpeg_quality(self) -> None:
        with self.assertRaises(ValueError):
            ConverterConfig(jpeg_quality=0)


class TestRotateImage(unittest.TestCase):
    def setUp(self) -> None:
        self.img = np.arange(2 * 3 * 3, dtype=np.uint8).reshape(2, 3, 3)

    def test_right_angles_are_exact(self) -> None:
        self.assertTrue(np.array_equal(rotate_image(self.img, 0), self.img))
        self.assertTrue(np.array_equal(rotate_image(self.img, 360), self.img))
        self.assertTrue(np.array_equal(rotate_image(self.img, 90), np.rot90(self.img, k=-1)))
        self.assertTrue(np.array_equal(rotate_image(self.img, 180), np.rot90(self.img, k=2)))
        self.assertTrue(np.array_equal(rotate_image(self.img, 270), np.rot90(self.img, k=1)))
        self.assertTrue(np.array_equal(rotate_image(self.img, -90), rotate_image(self.img, 270)))

    def test_arbitrary_angle_expands_canvas(self) -> None:
        img = np.full((10, 10, 3), 255, dtype=np.uint8)
        out = rotate_image(img, 45)
        self.assertEqual(out.shape, (14, 14, 3))
        # Corners of the expanded canvas are fill, the center is image content.
        self.assertEqual(out[0, 0].tolist(), [0, 0, 0])
        self.assertEqual(out[7, 7].tolist(), [255, 255, 255])


class TestEncodeYuv420(unittest.TestCase):
    def test_grey_image_round_trips(self) -> None:
        img = np.full((8, 6, 3), 128, dtype=np.uint8)
        buf = encode_yuv420(img)
        self.assertEqual((buf.width, buf.height), (6, 8))
        self.assertEqual((buf.chroma_u.width, buf.chroma_u.height), (3, 4))
        rgb = PlaneConverter().convert(buf)
        self.assertTrue(np.array_equal(rgb, img))

    def test_rejects_tiny_images(self) -> None:
        with self.assertRaises(ValueError):
            encode_yuv420(np.zeros((1, 4, 3), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
