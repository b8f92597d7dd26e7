"""
tests.py
Модуль автоматического тестирования (Unit Tests).
Запуск: python -m unittest tests
"""
import base64
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np

from config import Mode, StencilerConfig, StencilSettings, get_preset, parse_hex_color
from exporter import StencilExporter
from image_processor import (
    ImageProcessor,
    composite,
    dilate,
    ensure_rgba,
    fit_to_max_dim,
    normalize_luma,
    process_stencil,
    smooth,
    sobel_magnitude,
)
from ai_editor import GenerativeEditor, GenerativeServiceError, strip_data_url, to_png_bytes

WHITE = (255, 255, 255)


def solid(h, w, value):
    img = np.full((h, w, 4), value, dtype=np.uint8)
    img[..., 3] = 255
    return img


def photo(h=40, w=50, seed=0):
    """Фейковое «фото»: шум + тёмный круг + линия."""
    rng = np.random.default_rng(seed)
    img = rng.integers(60, 200, size=(h, w, 3), dtype=np.uint8)
    cv2.circle(img, (w // 3, h // 2), min(h, w) // 5, (10, 10, 10), -1)
    cv2.line(img, (0, 0), (w - 1, h - 1), (250, 250, 250), 2)
    return ensure_rgba(img)


def rgb_set(out):
    return {tuple(int(c) for c in px) for px in out[..., :3].reshape(-1, 3)}


class TestStencilSettings(unittest.TestCase):

    def test_defaults(self):
        s = StencilSettings()
        self.assertEqual(s.mode, Mode.EDGE)
        self.assertEqual(s.line_color, (0, 0, 0))
        self.assertAlmostEqual(s.threshold_value, 30 * 2.55)
        self.assertEqual(s.blur_radius, 2)
        self.assertEqual(s.dilation_radius, 0)

    def test_clamped(self):
        s = StencilSettings(contrast=255, brightness=-500, edge_intensity=999, thickness=0,
                            detail=150, smoothing=-3, mode="mixed", line_color=(300, -5, 10.4)).clamped()
        self.assertEqual(s.contrast, 100)
        self.assertEqual(s.brightness, -100)
        self.assertEqual(s.edge_intensity, 200)
        self.assertEqual(s.thickness, 1)
        self.assertEqual(s.detail, 100)
        self.assertEqual(s.smoothing, 0)
        self.assertIs(s.mode, Mode.MIXED)
        self.assertEqual(s.line_color, (255, 0, 10))

    def test_unknown_mode(self):
        with self.assertRaises(ValueError):
            StencilSettings(mode="sketch").clamped()

    def test_frozen(self):
        with self.assertRaises(Exception):
            StencilSettings().contrast = 5

    def test_presets(self):
        s = StencilSettings.from_preset("TRADITIONAL BOLD STENCIL")
        self.assertIs(s.mode, Mode.THRESHOLD)
        self.assertEqual(s.detail, 60)
        self.assertEqual(s.thickness, 4)
        # Пресет не трогает поля, которых нет в его описании
        self.assertEqual(s.brightness, 0)
        base = StencilSettings(brightness=42, line_color=(1, 2, 3))
        soft = base.with_preset("realistic_portrait_soft")
        self.assertEqual(soft.brightness, 42)
        self.assertEqual(soft.line_color, (1, 2, 3))
        self.assertEqual(soft.thickness, 1.5)
        with self.assertRaises(KeyError):
            get_preset("nope")

    def test_as_lineart(self):
        user = StencilSettings(mode=Mode.EDGE, smoothing=5, thickness=6, contrast=40,
                               flip_x=True, line_color=(0, 255, 0))
        s = user.as_lineart()
        self.assertIs(s.mode, Mode.THRESHOLD)
        self.assertEqual(s.detail, 50)
        self.assertEqual(s.smoothing, 0)
        self.assertEqual(s.line_color, (0, 255, 0))
        # Остальное - значения по умолчанию, а не пользовательские
        self.assertEqual(s.contrast, StencilSettings().contrast)
        self.assertEqual(s.thickness, 1)
        self.assertFalse(s.flip_x)

    def test_parse_hex_color(self):
        self.assertEqual(parse_hex_color("#FF8000"), (255, 128, 0))
        self.assertEqual(parse_hex_color("00ff0a"), (0, 255, 10))
        for bad in ("#FFF", "red", "#GG0000", ""):
            with self.assertRaises(ValueError):
                parse_hex_color(bad)


class TestStages(unittest.TestCase):

    def test_normalize_luma_identity_contrast(self):
        img = solid(2, 2, 77)
        gray = normalize_luma(img, contrast=0, brightness=0)
        self.assertEqual(gray.dtype, np.float32)
        np.testing.assert_allclose(gray, 77.0, atol=1e-3)

    def test_normalize_luma_weights_and_clamp(self):
        img = np.zeros((1, 3, 4), dtype=np.uint8)
        img[0, 0, :3] = (255, 0, 0)
        img[0, 1, :3] = (0, 255, 0)
        img[0, 2, :3] = (250, 250, 250)
        gray = normalize_luma(img, contrast=0, brightness=50)
        np.testing.assert_allclose(gray[0, 0], 0.299 * 255 + 0.587 * 50 + 0.114 * 50, atol=1e-3)
        np.testing.assert_allclose(gray[0, 1], 0.299 * 50 + 0.587 * 255 + 0.114 * 50, atol=1e-3)
        # 250 + 50 зажимается в 255
        np.testing.assert_allclose(gray[0, 2], 255.0, atol=1e-3)

    def test_normalize_luma_ignores_alpha(self):
        a = solid(2, 2, 90)
        b = a.copy()
        b[..., 3] = 0
        np.testing.assert_array_equal(normalize_luma(a, 10, 0), normalize_luma(b, 10, 0))

    def test_contrast_pole_guard(self):
        with self.assertRaises(ValueError):
            normalize_luma(solid(1, 1, 10), contrast=259, brightness=0)

    def test_zero_smoothing_identity(self):
        gray = np.random.default_rng(1).random((6, 7)).astype(np.float32) * 255
        out = smooth(gray, 0)
        self.assertIsNot(out, gray)
        self.assertEqual(out.tobytes(), gray.tobytes())

    def test_smoothing_matches_window_average(self):
        gray = np.random.default_rng(2).random((5, 6)).astype(np.float32) * 255
        r = 2
        out = smooth(gray, r)
        h, w = gray.shape
        for y in range(h):
            for x in range(w):
                window = gray[max(0, y - r):y + r + 1, max(0, x - r):x + r + 1]
                self.assertAlmostEqual(float(out[y, x]), float(window.mean()), places=3)

    def test_sobel_border_zero_3x3(self):
        gray = np.full((3, 3), 255, dtype=np.float32)
        gray[1, 1] = 0
        mag = sobel_magnitude(gray, 80)
        border = np.ones((3, 3), dtype=bool)
        border[1, 1] = False
        self.assertTrue(np.all(mag[border] == 0))
        # Центр симметричен: Gx = Gy = 0
        self.assertEqual(mag[1, 1], 0)

    def test_sobel_dot_neighbors_elevated(self):
        gray = np.full((7, 7), 255, dtype=np.float32)
        gray[3, 3] = 0
        mag = sobel_magnitude(gray, 20)
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dy or dx:
                    self.assertGreater(mag[3 + dy, 3 + dx], 0)
        self.assertEqual(mag[3, 3], 0)
        self.assertTrue(np.all(mag[0, :] == 0) and np.all(mag[-1, :] == 0))
        self.assertTrue(np.all(mag[:, 0] == 0) and np.all(mag[:, -1] == 0))

    def test_sobel_step_value(self):
        gray = np.zeros((3, 4), dtype=np.float32)
        gray[:, 2:] = 100
        mag = sobel_magnitude(gray, 40)
        # Gx = (1 + 2 + 1) * 100, множитель 40 / 20
        self.assertAlmostEqual(float(mag[1, 1]), 800.0, places=3)
        self.assertAlmostEqual(float(mag[1, 2]), 800.0, places=3)

    def test_sobel_tiny_images(self):
        for shape in ((1, 1), (2, 5), (5, 2)):
            mag = sobel_magnitude(np.ones(shape, dtype=np.float32), 80)
            self.assertEqual(mag.shape, shape)
            self.assertFalse(mag.any())

    def test_dilate_identity(self):
        buf = np.random.default_rng(3).random((4, 4)).astype(np.float32)
        np.testing.assert_array_equal(dilate(buf, 1), buf)
        # floor(1.5 / 2) = 0 -> тоже тождество
        np.testing.assert_array_equal(dilate(buf, 1.5), buf)

    def test_dilate_corner(self):
        buf = np.zeros((4, 4), dtype=np.float32)
        buf[0, 0] = 9
        out = dilate(buf, 3)
        expected = np.zeros((4, 4), dtype=np.float32)
        expected[:2, :2] = 9
        np.testing.assert_array_equal(out, expected)

    def test_dilate_excludes_out_of_bounds(self):
        # Если бы край считался нулём, отрицательные значения выросли бы до 0
        buf = np.full((3, 3), -5, dtype=np.float32)
        np.testing.assert_array_equal(dilate(buf, 4), buf)

    def test_composite_colors_and_flip(self):
        mask = np.array([[True, False, False]])
        out = composite(mask, (10, 20, 30), flip_x=False)
        self.assertEqual(tuple(out[0, 0]), (10, 20, 30, 255))
        self.assertEqual(tuple(out[0, 2]), (255, 255, 255, 255))
        flipped = composite(mask, (10, 20, 30), flip_x=True)
        self.assertEqual(tuple(flipped[0, 2]), (10, 20, 30, 255))

    def test_ensure_rgba(self):
        self.assertEqual(ensure_rgba(np.zeros((2, 3, 3), np.uint8)).shape, (2, 3, 4))
        self.assertTrue(np.all(ensure_rgba(np.zeros((2, 3), np.uint8))[..., 3] == 255))
        with self.assertRaises(ValueError):
            ensure_rgba(np.zeros((2, 3, 2), np.uint8))
        with self.assertRaises(ValueError):
            ensure_rgba(np.zeros((2, 3, 4), np.float32))


class TestPipeline(unittest.TestCase):

    def setUp(self):
        self.img = photo()

    def test_shape_and_alpha(self):
        for mode in Mode:
            out = process_stencil(self.img, StencilSettings(mode=mode, thickness=3))
            self.assertEqual(out.shape, self.img.shape)
            self.assertEqual(out.dtype, np.uint8)
            self.assertTrue(np.all(out[..., 3] == 255))

    def test_two_colors(self):
        color = (200, 30, 90)
        for mode in Mode:
            out = process_stencil(self.img, StencilSettings(mode=mode, line_color=color))
            self.assertTrue(rgb_set(out) <= {color, WHITE}, mode)

    def test_input_not_modified(self):
        before = self.img.copy()
        process_stencil(self.img, StencilSettings(mode=Mode.MIXED, thickness=5, flip_x=True))
        np.testing.assert_array_equal(self.img, before)

    def test_invert_involution(self):
        color = (0, 0, 255)
        s = StencilSettings(mode=Mode.THRESHOLD, detail=50, line_color=color)
        out = process_stencil(self.img, s)
        inv = process_stencil(self.img, replace(s, invert=True))
        self.assertFalse(np.array_equal(out, inv))
        is_line = np.all(out[..., :3] == color, axis=-1)
        inv_line = np.all(inv[..., :3] == color, axis=-1)
        np.testing.assert_array_equal(is_line, ~inv_line)
        twice = process_stencil(self.img, replace(replace(s, invert=True), invert=False))
        np.testing.assert_array_equal(twice, out)

    def test_flip_involution(self):
        s = StencilSettings(mode=Mode.MIXED, thickness=3)
        plain = process_stencil(self.img, s)
        flipped = process_stencil(self.img, replace(s, flip_x=True))
        np.testing.assert_array_equal(flipped, plain[:, ::-1])
        np.testing.assert_array_equal(flipped[:, ::-1], plain)

    def test_threshold_monotonic_in_detail(self):
        counts = []
        for detail in range(0, 101, 10):
            out = process_stencil(self.img, StencilSettings(mode=Mode.THRESHOLD, detail=detail))
            counts.append(int(np.count_nonzero(np.all(out[..., :3] == 0, axis=-1))))
        self.assertEqual(counts, sorted(counts))
        self.assertGreater(counts[-1], counts[0])

    def test_mid_gray_threshold_boundary(self):
        img = solid(4, 4, 128)
        out = process_stencil(img, StencilSettings(mode=Mode.THRESHOLD, detail=50))
        # 128 < 127.5 ложно -> всё фон
        self.assertEqual(rgb_set(out), {WHITE})
        out = process_stencil(img, StencilSettings(mode=Mode.THRESHOLD, detail=51))
        self.assertEqual(rgb_set(out), {(0, 0, 0)})

    def test_single_dot_edge_mode(self):
        img = solid(3, 3, 255)
        img[1, 1, :3] = 0
        out = process_stencil(img, StencilSettings(mode=Mode.EDGE))
        corners = [out[0, 0], out[0, 2], out[2, 0], out[2, 2]]
        for px in corners:
            self.assertEqual(tuple(px), (255, 255, 255, 255))

    def test_edge_detects_dot_neighbors(self):
        img = solid(9, 9, 255)
        img[4, 4, :3] = 0
        out = process_stencil(img, StencilSettings(mode=Mode.EDGE, smoothing=0, detail=10))
        line = np.all(out[..., :3] == 0, axis=-1)
        self.assertTrue(line[3:6, 3:6].sum() == 8)
        self.assertFalse(line[4, 4])
        self.assertFalse(line[0].any() or line[-1].any())

    def test_thickness_widens_edges(self):
        thin = process_stencil(self.img, StencilSettings(mode=Mode.EDGE, thickness=1))
        thick = process_stencil(self.img, StencilSettings(mode=Mode.EDGE, thickness=6))
        count = lambda out: int(np.count_nonzero(np.all(out[..., :3] == 0, axis=-1)))
        self.assertGreater(count(thick), count(thin))

    def test_threshold_mode_ignores_thickness(self):
        a = process_stencil(self.img, StencilSettings(mode=Mode.THRESHOLD, thickness=1))
        b = process_stencil(self.img, StencilSettings(mode=Mode.THRESHOLD, thickness=10))
        np.testing.assert_array_equal(a, b)

    def test_mixed_captures_dark_regions(self):
        img = solid(6, 6, 50)
        edge = process_stencil(img, StencilSettings(mode=Mode.EDGE, contrast=0))
        mixed = process_stencil(img, StencilSettings(mode=Mode.MIXED, contrast=0))
        self.assertEqual(rgb_set(edge), {WHITE})
        self.assertEqual(rgb_set(mixed), {(0, 0, 0)})

    def test_out_of_range_settings_are_clamped(self):
        out = process_stencil(self.img, StencilSettings(contrast=255, smoothing=50, thickness=99))
        self.assertEqual(out.shape, self.img.shape)

    def test_zero_area(self):
        for shape in ((0, 5, 4), (5, 0, 4), (0, 0, 4)):
            out = process_stencil(np.zeros(shape, np.uint8), StencilSettings(thickness=5))
            self.assertEqual(out.shape, shape)

    def test_rgb_input(self):
        out = process_stencil(self.img[..., :3].copy(), StencilSettings())
        self.assertEqual(out.shape, self.img.shape)


class TestImageIO(unittest.TestCase):

    def setUp(self):
        self.config = StencilerConfig()
        self.processor = ImageProcessor(self.config)
        self.exporter = StencilExporter(self.config)
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_fit_to_max_dim(self):
        img = np.zeros((50, 100, 4), np.uint8)
        self.assertEqual(fit_to_max_dim(img, 40).shape, (20, 40, 4))
        self.assertIs(fit_to_max_dim(img, 100), img)
        self.config.MAX_DIM = 25
        self.assertEqual(self.processor.prepare(img).shape[:2], (12, 25))

    def test_load_missing(self):
        with self.assertRaises(FileNotFoundError):
            self.processor.load_image(Path(self.tmp.name) / "missing.png")

    def test_load_is_rgba(self):
        path = Path(self.tmp.name) / "bgr.png"
        bgr = np.zeros((4, 5, 3), np.uint8)
        bgr[..., 0] = 255  # синий в BGR
        cv2.imwrite(str(path), bgr)
        rgba = self.processor.load_image(path)
        self.assertEqual(rgba.shape, (4, 5, 4))
        self.assertEqual(tuple(rgba[0, 0]), (0, 0, 255, 255))

    def test_decode_garbage(self):
        self.assertIsNone(self.processor.decode_image(b"not an image"))
        self.assertIsNone(self.processor.decode_image(b""))

    def test_make_transparent(self):
        img = solid(1, 3, 255)
        img[0, 1, :3] = (251, 251, 250)
        img[0, 2, :3] = (0, 0, 0)
        out = self.exporter.make_transparent(img)
        self.assertEqual(list(out[0, :, 3]), [0, 255, 255])
        self.assertTrue(np.all(img[..., 3] == 255))

    def test_flatten_on_white(self):
        img = np.zeros((1, 2, 4), np.uint8)
        img[0, 1] = (10, 20, 30, 255)
        rgb = self.exporter.flatten_on_white(img)
        self.assertEqual(tuple(rgb[0, 0]), (255, 255, 255))
        self.assertEqual(tuple(rgb[0, 1]), (10, 20, 30))

    def test_save_jpg_on_white(self):
        # Прозрачный фон + непрозрачный чёрный квадрат, выровненный по блокам JPEG
        img = np.zeros((32, 32, 4), np.uint8)
        img[16:, 16:, 3] = 255
        path = self.exporter.save(img, Path(self.tmp.name) / "out", fmt="jpg")
        self.assertEqual(path.suffix, ".jpg")
        bgr = cv2.imread(str(path))
        self.assertEqual(bgr.shape, (32, 32, 3))
        self.assertTrue(np.all(bgr[:8, :8] >= 245))
        self.assertTrue(np.all(bgr[24:, 24:] <= 10))
        with self.assertRaises(ValueError):
            self.exporter.save(img, Path(self.tmp.name) / "out", fmt="tiff")

    def test_save_roundtrip(self):
        stencil = process_stencil(photo(), StencilSettings(mode=Mode.THRESHOLD, detail=40))
        path = Path(self.tmp.name) / "out"
        lines = self.exporter.process_and_save(stencil, path, transparent=True)
        saved = self.processor.load_image(path.with_suffix(".png"))
        self.assertEqual(saved.shape, stencil.shape)
        self.assertEqual(lines, int(np.count_nonzero(saved[..., 3] == 255)))
        white = np.all(stencil[..., :3] == 255, axis=-1)
        self.assertTrue(np.all(saved[white, 3] == 0))


class FakeModels:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate_content(self, model, contents):
        self.calls.append((model, contents))
        if self.error is not None:
            raise self.error
        return self.response


class OfflineEditor(GenerativeEditor):
    def _build_contents(self, png, prompt):
        return [png, prompt]


def fake_response(data):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class TestGenerativeEditor(unittest.TestCase):

    def setUp(self):
        self.config = StencilerConfig()

    def test_strip_data_url(self):
        self.assertEqual(strip_data_url("data:image/png;base64,QUJD"), "QUJD")
        self.assertEqual(strip_data_url("data:image/jpeg;base64,QUJD"), "QUJD")
        self.assertEqual(strip_data_url("QUJD"), "QUJD")

    def test_to_png_bytes(self):
        self.assertEqual(to_png_bytes(b"\x89PNG"), b"\x89PNG")
        self.assertEqual(to_png_bytes("data:image/png;base64," + base64.b64encode(b"abc").decode()), b"abc")
        with self.assertRaises(ValueError):
            to_png_bytes("!!!not base64!!!")

    def test_apply_preset(self):
        models = FakeModels(response=fake_response(b"PNGDATA"))
        editor = OfflineEditor(self.config, client=SimpleNamespace(models=models))
        self.assertEqual(editor.apply_preset(b"img", "clean"), b"PNGDATA")
        model, contents = models.calls[0]
        self.assertEqual(model, self.config.AI_MODEL)
        self.assertEqual(contents[0], b"img")
        self.assertIn("tattoo stencil", contents[1])
        with self.assertRaises(KeyError):
            editor.apply_preset(b"img", "colorize")

    def test_base64_response(self):
        models = FakeModels(response=fake_response(base64.b64encode(b"xyz").decode()))
        editor = OfflineEditor(self.config, client=SimpleNamespace(models=models))
        self.assertEqual(editor.edit(b"img", "make it bold"), b"xyz")

    def test_no_image_in_response(self):
        empty = SimpleNamespace(candidates=[])
        editor = OfflineEditor(self.config, client=SimpleNamespace(models=FakeModels(response=empty)))
        with self.assertRaises(GenerativeServiceError):
            editor.edit(b"img", "x")

    def test_sdk_error_wrapped(self):
        models = FakeModels(error=RuntimeError("quota"))
        editor = OfflineEditor(self.config, client=SimpleNamespace(models=models))
        with self.assertRaises(GenerativeServiceError) as ctx:
            editor.edit(b"img", "x")
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)


class RecordingEditor:
    """Подменяет генеративный сервис: запоминает отправленные PNG, отвечает заготовкой."""

    def __init__(self, reply: bytes):
        self.reply = reply
        self.sent = []

    def apply_preset(self, image, preset):
        self.sent.append((preset, image))
        return self.reply

    def edit(self, image, prompt):
        self.sent.append((prompt, image))
        return self.reply


def png_bytes(rgba):
    return StencilExporter(StencilerConfig()).encode_png(rgba)


def lineart(h, w):
    """Белый лист с двумя однопиксельными чёрными линиями."""
    img = solid(h, w, 255)
    img[10, 5:w - 5, :3] = 0
    img[30, 5:w - 5, :3] = 0
    return img, np.all(img[..., :3] == 0, axis=-1)


class TestConsoleApp(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.src = Path(self.tmp.name) / "in"
        self.dst = Path(self.tmp.name) / "out"
        self.src.mkdir()
        for i in range(2):
            cv2.imwrite(str(self.src / f"img{i}.png"), cv2.cvtColor(photo(seed=i), cv2.COLOR_RGBA2BGR))

    def test_batch_run(self):
        from cli import ConsoleApp
        code = ConsoleApp().run([str(self.src), "--out", str(self.dst), "--preset", "TRADITIONAL BOLD STENCIL",
                                 "--line-color", "#ff0000", "--transparent"])
        self.assertEqual(code, 0)
        outputs = sorted(p.name for p in self.dst.glob("*.png"))
        self.assertEqual(outputs, ["img0_stencil.png", "img1_stencil.png"])
        saved = ImageProcessor(StencilerConfig()).load_image(self.dst / "img0_stencil.png")
        self.assertEqual(saved.shape, (40, 50, 4))
        opaque = saved[saved[..., 3] == 255][:, :3]
        self.assertTrue(np.all(opaque == (255, 0, 0)))

    def test_build_settings(self):
        from cli import ConsoleApp
        app = ConsoleApp()
        args = app.parse_args([str(self.src), "--preset", "LINEART CLEAN PRO", "--detail", "70",
                               "--mode", "mixed", "--flip-x"])
        s = app.build_settings(args)
        self.assertEqual(s.detail, 70)
        self.assertEqual(s.edge_intensity, 50)
        self.assertIs(s.mode, Mode.MIXED)
        self.assertTrue(s.flip_x)

    def test_max_dim_must_be_positive(self):
        from cli import ConsoleApp
        app = ConsoleApp()
        for value in ("0", "-3", "abc"):
            with self.assertRaises(SystemExit):
                app.parse_args([str(self.src), "--max-dim", value])
        self.assertEqual(app.parse_args([str(self.src), "--max-dim", "1"]).max_dim, 1)

    def test_transparent_jpg_rejected(self):
        from cli import ConsoleApp
        with self.assertRaises(SystemExit):
            ConsoleApp().parse_args([str(self.src), "--format", "jpg", "--transparent"])

    def test_jpg_output(self):
        from cli import ConsoleApp
        code = ConsoleApp().run([str(self.src), "--out", str(self.dst), "--format", "jpg"])
        self.assertEqual(code, 0)
        self.assertEqual(sorted(p.name for p in self.dst.iterdir()), ["img0_stencil.jpg", "img1_stencil.jpg"])

    def test_ai_clean_receives_finished_stencil(self):
        from cli import ConsoleApp
        reply = solid(40, 50, 0)
        reply[..., 0] = 255
        app = ConsoleApp()
        app.ai_editor = RecordingEditor(png_bytes(reply))
        self.assertEqual(app.run([str(self.src), "--out", str(self.dst), "--ai", "clean"]), 0)

        self.assertEqual([kind for kind, _ in app.ai_editor.sent], ["clean", "clean"])
        for seed, (_, data) in enumerate(app.ai_editor.sent):
            sent = app.img_proc.decode_image(data)
            self.assertTrue(rgb_set(sent) <= {(0, 0, 0), WHITE})
            np.testing.assert_array_equal(sent, process_stencil(photo(seed=seed), StencilSettings()))

        # Сохраняется ответ сервиса, а не локальный стенсил
        saved = app.img_proc.load_image(self.dst / "img0_stencil.png")
        self.assertEqual(rgb_set(saved), {(255, 0, 0)})

    def test_ai_lineart_is_thresholded(self):
        from cli import ConsoleApp
        reply, mask = lineart(40, 50)
        app = ConsoleApp()
        app.ai_editor = RecordingEditor(png_bytes(reply))
        code = app.run([str(self.src), "--out", str(self.dst), "--ai", "stencil", "--mode", "edge",
                        "--smoothing", "5", "--thickness", "6", "--line-color", "#00ff00"])
        self.assertEqual(code, 0)

        kind, data = app.ai_editor.sent[0]
        self.assertEqual(kind, "stencil")
        np.testing.assert_array_equal(app.img_proc.decode_image(data), photo(seed=0))

        saved = app.img_proc.load_image(self.dst / "img0_stencil.png")
        self.assertTrue(rgb_set(saved) <= {(0, 255, 0), WHITE})
        np.testing.assert_array_equal(np.all(saved[..., :3] == (0, 255, 0), axis=-1), mask)

    def test_ai_prompt_runs_before_user_settings(self):
        from cli import ConsoleApp
        reply, mask = lineart(40, 50)
        app = ConsoleApp()
        app.ai_editor = RecordingEditor(png_bytes(reply))
        code = app.run([str(self.src), "--out", str(self.dst), "--prompt", "bold lines",
                        "--mode", "threshold", "--detail", "50", "--smoothing", "0"])
        self.assertEqual(code, 0)
        kind, data = app.ai_editor.sent[0]
        self.assertEqual(kind, "bold lines")
        np.testing.assert_array_equal(app.img_proc.decode_image(data), photo(seed=0))
        saved = app.img_proc.load_image(self.dst / "img0_stencil.png")
        np.testing.assert_array_equal(np.all(saved[..., :3] == 0, axis=-1), mask)

    def test_ai_unreadable_reply_fails_batch(self):
        from cli import ConsoleApp
        app = ConsoleApp()
        app.ai_editor = RecordingEditor(b"not a png")
        self.assertEqual(app.run([str(self.src), "--out", str(self.dst), "--ai", "flatten"]), 2)
        self.assertEqual(len(app.ai_editor.sent), 2)
        self.assertEqual(list(self.dst.glob("*.png")), [])

    def test_empty_dir(self):
        from cli import ConsoleApp
        empty = Path(self.tmp.name) / "empty"
        empty.mkdir()
        self.assertEqual(ConsoleApp().run([str(empty), "--out", str(self.dst)]), 1)


if __name__ == '__main__':
    unittest.main()
