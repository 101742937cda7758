#!/usr/bin/env python3
"""
img2ascii.py — Image-to-ASCII converter with tone mapping and themed export.

Pipeline (one run):
    resolve grid height → rasterize (the one await) → luminance / tone map
    → palette index → layout → AsciiArtResult

Export to plain text or HTML lives in ``exporters``.
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import functools
import math
import os
import sys
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ascii_settings import (EFFECTS, PALETTES, THEMES, Settings, get_effect,
                            get_palette)
from errors import ConversionError, DecodeError, InvalidDimension
from exporters import FORMATS, HTML, export, write_artifact
from raster_source import PillowRasterSource, RasterSource

# ── Tuneable parameters ───────────────────────────────────────────────────────

# Height-to-width correction for monospace glyphs, which are taller than wide.
CHAR_ASPECT: float = 0.55

# Exponent of the adaptive tone curve; < 1 lifts mid-tones.
ADAPTIVE_GAMMA: float = 0.8

# Rec.601 luma weights, scaled by 1000 so the floor is exact.
LUMA_WEIGHTS = np.array([299, 587, 114], dtype=np.int64)


class Stage(enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    SOURCING = "sourcing"
    TONE_MAPPING = "tone-mapping"
    PALETTE_MAPPING = "palette-mapping"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AsciiArtResult:
    text: str
    rows: int
    chars: int
    source_size: Optional[tuple[int, int]] = None

    @classmethod
    def from_text(cls, text: str,
                  source_size: Optional[tuple[int, int]] = None) -> "AsciiArtResult":
        rows, chars = count_stats(text)
        return cls(text, rows, chars, source_size)


# ── Geometry ──────────────────────────────────────────────────────────────────

def resolve_height(src_w: int, src_h: int, width: int,
                   aspect_correction: bool = True) -> int:
    """Glyph-grid height for a *width*-column grid over a src_w × src_h image."""
    if width <= 0:
        raise InvalidDimension(f"width must be positive, got {width}")
    if src_w <= 0 or src_h <= 0:
        raise InvalidDimension(f"source image is {src_w}×{src_h}")

    k = CHAR_ASPECT if aspect_correction else 1.0
    height = math.floor(width * (src_h / src_w) * k)
    if height < 1:
        raise InvalidDimension(
            f"{width} columns over a {src_w}×{src_h} image leaves no rows"
        )
    return height


# ── Tone mapping ──────────────────────────────────────────────────────────────

def luminance(pixels: np.ndarray) -> np.ndarray:
    """
    Integer luma in [0, 255] for an (..., 3|4) pixel array; alpha is ignored.
    Equivalent to floor(0.299 r + 0.587 g + 0.114 b).
    """
    rgb = np.asarray(pixels)[..., :3].astype(np.int64)
    return (rgb @ LUMA_WEIGHTS) // 1000


def normalize(lum: np.ndarray, adaptive: bool) -> np.ndarray:
    """Map luma to intensity in [0, 1], gamma-compressed when *adaptive*."""
    intensity = np.asarray(lum, dtype=np.float64) / 255.0
    if adaptive:
        intensity = intensity ** ADAPTIVE_GAMMA
    return intensity


# ── Palette mapping ───────────────────────────────────────────────────────────

def glyph_indices(lum: np.ndarray, palette_len: int, adaptive: bool = False,
                  reverse: bool = False) -> np.ndarray:
    """
    Palette index for every luma value: floor(intensity × (P − 1)), clamped
    to [0, P − 1], then mirrored when *reverse* is set.
    """
    top = palette_len - 1
    if adaptive:
        idx = np.floor(normalize(lum, True) * top).astype(np.intp)
    else:
        # Same floor as intensity × top, kept in integers.
        idx = (np.asarray(lum, dtype=np.intp) * top) // 255
    idx = np.clip(idx, 0, top)
    if reverse:
        idx = top - idx
    return idx


# ── Layout ────────────────────────────────────────────────────────────────────

def assemble(glyphs: np.ndarray, double_width: bool = False,
             spacing: bool = False) -> str:
    """
    Join a (rows, cols) glyph array into text: every glyph doubled when
    *double_width*, one space between columns when *spacing*, and a newline
    after every row.
    """
    cells = np.char.add(glyphs, glyphs) if double_width else glyphs
    sep = " " if spacing else ""
    return "".join(sep.join(row) + "\n" for row in cells.tolist())


def count_stats(text: str) -> tuple[int, int]:
    """Return (rows, chars); unterminated trailing content counts as a row."""
    rows = text.count("\n")
    if text and not text.endswith("\n"):
        rows += 1
    return rows, len(text)


def render_pixels(pixels: np.ndarray, settings: Settings,
                  on_stage: Optional[Callable[[Stage], None]] = None,
                  source_size: Optional[tuple[int, int]] = None) -> AsciiArtResult:
    """Tone-map, palette-map and lay out an RGBA buffer (no I/O)."""
    notify = on_stage or (lambda stage: None)
    chars = np.asarray(list(get_palette(settings.palette)))

    notify(Stage.TONE_MAPPING)
    lum = luminance(pixels)

    notify(Stage.PALETTE_MAPPING)
    idx = glyph_indices(lum, len(chars), settings.adaptive, settings.reverse_colors)

    notify(Stage.ASSEMBLING)
    text = assemble(chars[idx], settings.double_width, settings.spacing)
    return AsciiArtResult.from_text(text, source_size)


# ── Run ───────────────────────────────────────────────────────────────────────

async def convert(image, settings: Optional[Settings] = None,
                  source: Optional[RasterSource] = None,
                  on_stage: Optional[Callable[[Stage], None]] = None) -> AsciiArtResult:
    """
    Convert *image* (bytes, path or binary file) into ASCII art.

    The image is opened once, inside the awaited raster source call; the grid
    size is resolved there from the image header through ``fit``.

    Any failure is raised as a ``ConversionError`` whose ``stage`` names the
    step that failed; nothing partial is returned.  There is no cancellation:
    a caller that no longer wants the result simply discards it.
    """
    settings = settings or Settings()
    source = source or PillowRasterSource()
    stage = Stage.IDLE
    grid = {}

    def advance(next_stage: Stage) -> None:
        nonlocal stage
        stage = next_stage
        if on_stage is not None:
            on_stage(next_stage)

    def fit(src_w: int, src_h: int) -> tuple[int, int]:
        try:
            height = resolve_height(src_w, src_h, settings.width,
                                    settings.aspect_correction)
        except InvalidDimension as exc:
            exc.stage = Stage.RESOLVING
            raise
        grid["size"] = (settings.width, height)
        return grid["size"]

    try:
        advance(Stage.RESOLVING)
        get_palette(settings.palette)
        get_effect(settings.effect)

        advance(Stage.SOURCING)
        raster = await source.rasterize(image, fit, settings.brightness,
                                        settings.contrast)
        pixels = raster.pixels
        width, height = grid.get("size", (settings.width, None))
        if pixels.shape[:2] != (height, width):
            raise DecodeError(
                f"raster source returned {pixels.shape[1]}×{pixels.shape[0]}, "
                f"expected {width}×{height}"
            )

        result = render_pixels(pixels, settings, advance, raster.source_size)
    except ConversionError as exc:
        if exc.stage is None:
            exc.stage = stage
        if on_stage is not None:
            on_stage(Stage.FAILED)
        raise

    advance(Stage.DONE)
    return result


def convert_sync(image, settings: Optional[Settings] = None,
                 source: Optional[RasterSource] = None) -> AsciiArtResult:
    """Blocking wrapper around ``convert`` for callers without a loop."""
    return asyncio.run(convert(image, settings, source))


# ── Entry point ───────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    defaults = Settings()
    parser = argparse.ArgumentParser(
        prog="img2ascii",
        description="Convert an image to ASCII art (plain text or themed HTML).",
    )
    parser.add_argument("image", nargs="?", help="image file to convert")
    parser.add_argument("--width", type=int, default=defaults.width,
                        help=f"grid width in glyphs (default: {defaults.width})")
    parser.add_argument("--brightness", type=float, default=defaults.brightness)
    parser.add_argument("--contrast", type=float, default=defaults.contrast)
    parser.add_argument("--palette", default=defaults.palette,
                        help=f"one of: {', '.join(PALETTES)}")
    parser.add_argument("--effect", default=defaults.effect,
                        help=f"one of: {', '.join(EFFECTS)}")
    parser.add_argument("--no-adaptive", dest="adaptive", action="store_false",
                        help="map luma linearly instead of through the adaptive curve")
    parser.add_argument("--no-aspect-correction", dest="aspect_correction",
                        action="store_false")
    parser.add_argument("--double-width", action="store_true")
    parser.add_argument("--spacing", action="store_true",
                        help="put a space between columns")
    parser.add_argument("--reverse", dest="reverse_colors", action="store_true",
                        help="invert the palette")
    parser.add_argument("--theme", default=defaults.theme,
                        help=f"one of: {', '.join(THEMES)} (paper exports plain text)")
    parser.add_argument("--format", dest="fmt", choices=FORMATS, default=HTML)
    parser.add_argument("-o", "--output-dir", default=None,
                        help="directory for the output file (default: next to the image)")
    parser.add_argument("--stdout", action="store_true",
                        help="print the ASCII art instead of writing a file")
    parser.add_argument("--list", action="store_true",
                        help="list palettes, effects and themes, then exit")
    return parser


def _print_registries() -> None:
    print("Palettes:")
    for name, glyphs in PALETTES.items():
        print(f"  {name:<10}{glyphs!r}")
    print("Effects:")
    for name, label in EFFECTS.items():
        print(f"  {name:<10}{label}")
    print("Themes:")
    for name, theme in THEMES.items():
        print(f"  {name:<10}{theme.background} / {theme.foreground}")


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.list:
        _print_registries()
        return 0
    if args.image is None:
        parser.error("the following arguments are required: image")

    # Status lines must not mix with art written to stdout.
    status = functools.partial(print, file=sys.stderr) if args.stdout else print

    if not os.path.exists(args.image):
        status(f"Error: file not found: {args.image!r}")
        return 1

    try:
        settings = Settings(
            width=args.width,
            brightness=args.brightness,
            contrast=args.contrast,
            palette=args.palette,
            effect=args.effect,
            adaptive=args.adaptive,
            aspect_correction=args.aspect_correction,
            double_width=args.double_width,
            spacing=args.spacing,
            reverse_colors=args.reverse_colors,
            theme=args.theme,
        )
        status(f"\nASCII Renderer  ({settings.palette} palette, {settings.theme} theme)")
        status(f"{'─' * 45}")
        result = convert_sync(args.image, settings)
        artifact = export(result, settings.theme, args.fmt)
    except ConversionError as exc:
        status(f"Error: {exc}")
        return 1

    src_w, src_h = result.source_size
    status(f"  Source   : {src_w}×{src_h} px")
    cols = len(result.text.splitlines()[0]) if result.text else 0
    status(f"  Grid     : {cols} cols × {result.rows} rows")

    if args.stdout:
        sys.stdout.write(result.text)
        return 0

    out_dir = args.output_dir or os.path.dirname(os.path.abspath(args.image))
    try:
        path = write_artifact(artifact, out_dir)
    except OSError as exc:
        status(f"Error: cannot write output: {exc}")
        return 1
    status(f"  Output   : {path}  ({result.rows} lines, {result.chars} characters)")
    status(f"{'─' * 45}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
