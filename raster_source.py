"""
raster_source.py — Decode an image and resample it into an RGBA pixel buffer.

The converter only depends on the ``RasterSource`` contract: an awaitable
``rasterize`` that opens the image once, asks a *fit* callback for the target
grid size given the source size, and returns a ``Raster`` whose pixels are a
``(height, width, 4)`` uint8 array with brightness / contrast already applied.
``PillowRasterSource`` is the stock implementation.
"""

from __future__ import annotations

import asyncio
import io
import os
from dataclasses import dataclass
from typing import BinaryIO, Callable, Protocol, Union

import numpy as np
from PIL import Image

from errors import DecodeError, UnsupportedFormat

ImageInput = Union[bytes, bytearray, memoryview, str, os.PathLike, BinaryIO]

# (source width, source height) -> (target width, target height)
FitFn = Callable[[int, int], tuple[int, int]]

# Resampling filter used for the width × height downscale.
RESAMPLE = Image.Resampling.BILINEAR


@dataclass(frozen=True)
class Raster:
    pixels: np.ndarray
    source_size: tuple[int, int]


class RasterSource(Protocol):
    async def rasterize(self, image: ImageInput, fit: FitFn,
                        brightness: float = 1.0,
                        contrast: float = 1.0) -> Raster: ...


# ── Tone pre-filter ───────────────────────────────────────────────────────────

def tone_lut(brightness: float, contrast: float) -> np.ndarray:
    """
    Build the 256-entry lookup table for a brightness filter followed by a
    contrast filter.  Brightness scales each level; contrast stretches levels
    about mid-grey (127.5).  Each step clamps to [0, 255].
    """
    levels = np.arange(256, dtype=np.float64)
    levels = np.clip(levels * brightness, 0, 255)
    levels = np.clip((levels - 127.5) * contrast + 127.5, 0, 255)
    return levels.astype(np.uint8)


# ── Pillow implementation ─────────────────────────────────────────────────────

def _has_decoder(name: str) -> bool:
    return name in Image.DECODERS or hasattr(Image.core, f"{name}_decoder")


class PillowRasterSource:
    """
    Raster source backed by Pillow.

    *accepted_formats* optionally restricts the Pillow format names
    (``"PNG"``, ``"JPEG"`` …) this source will handle; anything else that
    Pillow recognises is rejected with ``UnsupportedFormat``.
    """

    def __init__(self, accepted_formats=None, resample=RESAMPLE):
        self.accepted_formats = (
            frozenset(f.upper() for f in accepted_formats)
            if accepted_formats is not None else None
        )
        self.resample = resample

    def _open(self, image: ImageInput) -> Image.Image:
        if isinstance(image, (bytes, bytearray, memoryview)):
            image = io.BytesIO(bytes(image))
        elif hasattr(image, "seek") and hasattr(image, "read"):
            image.seek(0)
        try:
            img = Image.open(image)
        except (OSError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"cannot read image: {exc}") from exc

        if self.accepted_formats is not None and img.format not in self.accepted_formats:
            fmt = img.format
            img.close()
            raise UnsupportedFormat(f"{fmt} images are not accepted")
        return img

    def _decode(self, img: Image.Image) -> Image.Image:
        """Load *img* and return it as RGBA."""
        label = f"{img.format or 'image'} ({img.mode})"
        missing = [tile[0] for tile in img.tile if not _has_decoder(tile[0])]
        if missing:
            raise UnsupportedFormat(f"cannot decode {label}: no {missing[0]} decoder")
        try:
            img.load()
        except OSError as exc:
            raise DecodeError(f"corrupt {label}: {exc}") from exc
        try:
            return img.convert("RGBA")
        except ValueError as exc:
            raise UnsupportedFormat(f"cannot convert {label}: {exc}") from exc

    def rasterize_now(self, image: ImageInput, fit: FitFn,
                      brightness: float = 1.0,
                      contrast: float = 1.0) -> Raster:
        """Blocking body of ``rasterize``."""
        with self._open(image) as img:
            source_size = img.size
            # Sized from the header alone, before any pixel data is decoded.
            width, height = fit(*source_size)
            rgba = self._decode(img)

        resized = rgba.resize((width, height), self.resample)
        pixels = np.array(resized, dtype=np.uint8)

        if brightness != 1.0 or contrast != 1.0:
            lut = tone_lut(brightness, contrast)
            pixels[..., :3] = lut[pixels[..., :3]]

        pixels.setflags(write=False)
        return Raster(pixels, source_size)

    async def rasterize(self, image: ImageInput, fit: FitFn,
                        brightness: float = 1.0,
                        contrast: float = 1.0) -> Raster:
        # Runs in a worker thread; the caller awaits completion.
        return await asyncio.to_thread(
            self.rasterize_now, image, fit, brightness, contrast
        )
