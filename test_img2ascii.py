import asyncio
import io
import unittest

import numpy as np
from PIL import Image

import img2ascii
from ascii_settings import PALETTES, Settings
from errors import DecodeError, InvalidDimension, InvalidSettings
from raster_source import Raster
from img2ascii import (AsciiArtResult, Stage, assemble, convert, convert_sync,
                       count_stats, glyph_indices, luminance, normalize,
                       render_pixels, resolve_height)


def _png(size, color, mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def _rgba(rows):
    """Build an RGBA buffer from a nested list of grey levels."""
    grey = np.asarray(rows, dtype=np.uint8)
    alpha = np.full_like(grey, 255)
    return np.stack([grey, grey, grey, alpha], axis=-1)


class FakeSource:
    def __init__(self, pixels, size=None):
        self.pixels = pixels
        self.size = size or (pixels.shape[1], pixels.shape[0])
        self.calls = 0

    async def rasterize(self, image, fit, brightness=1.0, contrast=1.0):
        self.calls += 1
        fit(*self.size)
        return Raster(self.pixels, self.size)


class ResolveHeightTest(unittest.TestCase):
    def test_aspect_correction_scales_height(self):
        self.assertEqual(resolve_height(200, 100, 120, aspect_correction=True), 33)

    def test_without_correction_keeps_source_ratio(self):
        self.assertEqual(resolve_height(200, 100, 120, aspect_correction=False), 60)
        self.assertEqual(resolve_height(2, 2, 2, aspect_correction=False), 2)

    def test_height_is_floored(self):
        # 10 * (7 / 3) * 0.55 = 12.83…
        self.assertEqual(resolve_height(3, 7, 10, aspect_correction=True), 12)

    def test_non_positive_width(self):
        for width in (0, -5):
            with self.assertRaises(InvalidDimension):
                resolve_height(100, 100, width)

    def test_degenerate_height(self):
        with self.assertRaises(InvalidDimension):
            resolve_height(1000, 10, 50, aspect_correction=True)


class ToneMappingTest(unittest.TestCase):
    def test_luminance_weights_and_floor(self):
        pixels = np.array([[[255, 255, 255, 0], [255, 0, 0, 255],
                            [0, 255, 0, 255], [0, 0, 255, 255]]], dtype=np.uint8)
        self.assertEqual(luminance(pixels).tolist(), [[255, 76, 149, 29]])

    def test_alpha_is_ignored(self):
        a = np.array([[10, 20, 30, 0]], dtype=np.uint8)
        b = np.array([[10, 20, 30, 255]], dtype=np.uint8)
        self.assertEqual(luminance(a).tolist(), luminance(b).tolist())

    def test_adaptive_lifts_mid_tones(self):
        lum = np.array([0, 128, 255])
        linear = normalize(lum, adaptive=False)
        adaptive = normalize(lum, adaptive=True)
        self.assertEqual(adaptive[0], 0.0)
        self.assertEqual(adaptive[2], 1.0)
        self.assertGreater(adaptive[1], linear[1])


class GlyphIndexTest(unittest.TestCase):
    levels = np.arange(256)

    def test_indices_stay_in_range(self):
        for size in (2, 7, 10, 15, 70):
            for adaptive in (False, True):
                for reverse in (False, True):
                    idx = glyph_indices(self.levels, size, adaptive, reverse)
                    self.assertGreaterEqual(idx.min(), 0)
                    self.assertLessEqual(idx.max(), size - 1)

    def test_brighter_never_maps_darker(self):
        for name, glyphs in PALETTES.items():
            for adaptive in (False, True):
                idx = glyph_indices(self.levels, len(glyphs), adaptive)
                self.assertTrue(np.all(np.diff(idx) >= 0), name)
                rev = glyph_indices(self.levels, len(glyphs), adaptive, reverse=True)
                self.assertTrue(np.all(np.diff(rev) <= 0), name)

    def test_extremes(self):
        idx = glyph_indices(np.array([0, 255]), 10)
        self.assertEqual(idx.tolist(), [0, 9])
        idx = glyph_indices(np.array([0, 255]), 10, reverse=True)
        self.assertEqual(idx.tolist(), [9, 0])

    def test_linear_floor(self):
        # 127 * 9 / 255 = 4.48…
        self.assertEqual(glyph_indices(np.array([127]), 10).tolist(), [4])


class LayoutTest(unittest.TestCase):
    grid = np.array([["a", "b"], ["c", "d"]])

    def test_plain_rows(self):
        self.assertEqual(assemble(self.grid), "ab\ncd\n")

    def test_double_width(self):
        self.assertEqual(assemble(self.grid, double_width=True), "aabb\nccdd\n")

    def test_spacing_skips_last_column(self):
        self.assertEqual(assemble(self.grid, spacing=True), "a b\nc d\n")
        self.assertEqual(assemble(self.grid, True, True), "aa bb\ncc dd\n")

    def test_count_stats(self):
        self.assertEqual(count_stats("ab\ncd\n"), (2, 6))
        self.assertEqual(count_stats("ab\ncd"), (2, 5))
        self.assertEqual(count_stats(""), (0, 0))

    def test_row_count_matches_height_for_every_layout(self):
        pixels = _rgba(np.arange(12).reshape(3, 4) * 20)
        for double_width in (False, True):
            for spacing in (False, True):
                settings = Settings(width=4, double_width=double_width, spacing=spacing)
                self.assertEqual(render_pixels(pixels, settings).rows, 3)


class ScenarioTest(unittest.TestCase):
    white = _png((2, 2), "white")
    base = Settings(width=2, aspect_correction=False, palette="classic", adaptive=False)

    def test_white_image_renders_spaces(self):
        result = convert_sync(self.white, self.base)
        self.assertEqual(result.text, "  \n  \n")
        self.assertEqual((result.rows, result.chars), (2, 6))

    def test_reverse_renders_darkest_glyph(self):
        result = convert_sync(self.white, self.base.replace(reverse_colors=True))
        self.assertEqual(result.text, "@@\n@@\n")

    def test_unknown_palette_fails_run(self):
        source = FakeSource(_rgba([[0, 0]]))
        with self.assertRaises(InvalidSettings) as ctx:
            convert_sync(self.white, self.base.replace(palette="ansi"), source)
        self.assertEqual(ctx.exception.stage, Stage.RESOLVING)
        self.assertEqual(source.calls, 0)

    def test_unknown_effect_fails_run(self):
        with self.assertRaises(InvalidSettings):
            convert_sync(self.white, self.base.replace(effect="glitter"))

    def test_identical_runs_are_identical(self):
        data = _png((16, 9), (90, 140, 200))
        settings = Settings(width=16, spacing=True, palette="braille")
        self.assertEqual(convert_sync(data, settings), convert_sync(data, settings))

    def test_grid_height_follows_geometry(self):
        data = _png((200, 100), (128, 128, 128))
        result = convert_sync(data, Settings(width=120))
        self.assertEqual(result.rows, 33)
        self.assertEqual(len(result.text.splitlines()[0]), 120)
        self.assertEqual(result.source_size, (200, 100))

    def test_undecodable_input(self):
        with self.assertRaises(DecodeError) as ctx:
            convert_sync(b"definitely not an image", self.base)
        self.assertEqual(ctx.exception.stage, Stage.SOURCING)

    def test_truncated_input_is_a_typed_failure(self):
        buf = io.BytesIO()
        Image.effect_noise((64, 64), 64).save(buf, format="PNG")
        data = buf.getvalue()
        with self.assertRaises(DecodeError) as ctx:
            convert_sync(data[:len(data) // 2], Settings(width=10))
        self.assertEqual(ctx.exception.stage, Stage.SOURCING)


class ConvertStagesTest(unittest.IsolatedAsyncioTestCase):
    async def test_stages_in_order(self):
        seen = []
        source = FakeSource(_rgba([[0, 255]]), size=(2, 1))
        result = await convert(b"", Settings(width=2, aspect_correction=False),
                               source, seen.append)
        self.assertIsInstance(result, AsciiArtResult)
        self.assertEqual(seen, [Stage.RESOLVING, Stage.SOURCING, Stage.TONE_MAPPING,
                                Stage.PALETTE_MAPPING, Stage.ASSEMBLING, Stage.DONE])

    async def test_degenerate_height_fails_resolving(self):
        seen = []
        source = FakeSource(_rgba([[0]]), size=(1000, 10))
        with self.assertRaises(InvalidDimension) as ctx:
            await convert(b"", Settings(width=50), source, seen.append)
        self.assertEqual(ctx.exception.stage, Stage.RESOLVING)
        self.assertEqual(seen[-1], Stage.FAILED)

    async def test_wrong_buffer_size_fails_sourcing(self):
        seen = []
        source = FakeSource(_rgba([[0, 255, 0]]), size=(2, 1))
        with self.assertRaises(DecodeError) as ctx:
            await convert(b"", Settings(width=2, aspect_correction=False),
                          source, seen.append)
        self.assertEqual(ctx.exception.stage, Stage.SOURCING)
        self.assertEqual(seen[-1], Stage.FAILED)

    async def test_concurrent_runs_are_independent(self):
        dark = FakeSource(_rgba([[0, 0]]), size=(2, 1))
        light = FakeSource(_rgba([[255, 255]]), size=(2, 1))
        settings = Settings(width=2, aspect_correction=False, palette="classic")
        a, b = await asyncio.gather(convert(b"", settings, dark),
                                    convert(b"", settings, light))
        self.assertEqual(a.text, "@@\n")
        self.assertEqual(b.text, "  \n")


class MainTest(unittest.TestCase):
    def setUp(self):
        import tempfile
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name
        self.image = f"{self.tmp}/in.png"
        Image.new("RGB", (40, 20), (30, 60, 90)).save(self.image)

    def tearDown(self):
        self._tmp.cleanup()

    def test_writes_html_by_default(self):
        code = img2ascii.main([self.image, "--width", "10", "-o", self.tmp])
        self.assertEqual(code, 0)
        with open(f"{self.tmp}/ascii-art.html", encoding="utf-8") as fh:
            self.assertIn("<!DOCTYPE html>", fh.read())

    def test_paper_theme_writes_text(self):
        code = img2ascii.main([self.image, "--width", "10", "--theme", "paper",
                               "-o", self.tmp])
        self.assertEqual(code, 0)
        with open(f"{self.tmp}/ascii-art.txt", encoding="utf-8") as fh:
            self.assertEqual(len(fh.read().splitlines()), 2)

    def test_bad_palette_exits_with_error(self):
        self.assertEqual(img2ascii.main([self.image, "--palette", "nope"]), 1)

    def test_oversized_image_exits_with_error(self):
        from test_raster_source import _png_header
        path = f"{self.tmp}/huge.png"
        with open(path, "wb") as fh:
            fh.write(_png_header(30000, 30000))
        self.assertEqual(img2ascii.main([path, "--width", "10", "-o", self.tmp]), 1)

    def test_missing_file(self):
        self.assertEqual(img2ascii.main([f"{self.tmp}/missing.png"]), 1)


if __name__ == "__main__":
    unittest.main()
