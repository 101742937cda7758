"""
errors.py — Failure taxonomy for the image-to-ASCII pipeline.
"""

from __future__ import annotations


class ConversionError(Exception):
    """Base class for every failure a conversion run can surface.

    *stage* is filled in by the run with the pipeline stage that failed
    (see ``img2ascii.Stage``); it stays ``None`` when the error is raised
    outside a run, e.g. while building ``Settings``.
    """

    def __init__(self, message: str, stage=None):
        super().__init__(message)
        self.stage = stage


class InvalidDimension(ConversionError):
    """Requested width is not positive or the computed grid height is < 1."""


class InvalidSettings(ConversionError):
    """Unknown palette / theme / effect / format, or a bad multiplier."""


class DecodeError(ConversionError):
    """The input could not be read as an image at all."""


class UnsupportedFormat(ConversionError):
    """The input is a recognised image that cannot be decoded here."""
