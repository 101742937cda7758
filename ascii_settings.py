"""
ascii_settings.py — Per-run settings and the fixed palette / theme / effect
registries shared by the converter and the exporters.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass

from errors import InvalidDimension, InvalidSettings

# ── Character palettes ────────────────────────────────────────────────────────
# Ordered darkest-appearing → lightest-appearing.  The last glyph of every
# palette is a space so a white pixel renders as blank paper.
PALETTES: dict[str, str] = {
    "detailed": "█▉▊▋▌▍▎▏ ",
    "classic":  "@%#*+=-:. ",
    "blocks":   "██▓▒░  ",
    "dots":     "●◐◑◒◓○⚬⚪ ",
    "braille":  "⣿⣾⣽⣻⣟⣯⣷⣶⣴⣲⣱⣰⣠⣀ ",
}

# ── Effects ───────────────────────────────────────────────────────────────────
# Offered as named presets but carry no tone transform of their own; the
# brightness / contrast / adaptive knobs do all of the numeric work.
EFFECTS: dict[str, str] = {
    "none":     "No Effects",
    "enhance":  "Enhanced Detail",
    "smooth":   "Smooth Gradients",
    "edge":     "Edge Enhancement",
    "artistic": "Artistic Style",
    "dramatic": "Dramatic Lighting",
}


# ── Themes ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Theme:
    name: str
    background: str
    foreground: str
    label: str

    @property
    def forces_plain(self) -> bool:
        """The paper theme always exports plain text."""
        return self.name == "paper"


THEMES: dict[str, Theme] = {
    t.name: t for t in (
        Theme("matrix",   "#000000", "#00ff00", "Matrix"),
        Theme("terminal", "#1e1e1e", "#ffffff", "Terminal"),
        Theme("retro",    "#000080", "#ffff00", "Retro"),
        Theme("paper",    "#ffffff", "#000000", "Paper"),
        Theme("neon",     "#0a0a0a", "#ff00ff", "Neon"),
    )
}


def get_palette(name: str) -> str:
    try:
        return PALETTES[name]
    except KeyError:
        raise InvalidSettings(
            f"unknown palette {name!r} (choose from {', '.join(PALETTES)})"
        ) from None


def get_theme(name: str) -> Theme:
    try:
        return THEMES[name]
    except KeyError:
        raise InvalidSettings(
            f"unknown theme {name!r} (choose from {', '.join(THEMES)})"
        ) from None


def get_effect(name: str) -> str:
    """Return the display label for effect *name*."""
    try:
        return EFFECTS[name]
    except KeyError:
        raise InvalidSettings(
            f"unknown effect {name!r} (choose from {', '.join(EFFECTS)})"
        ) from None


# ── Settings ──────────────────────────────────────────────────────────────────

DEFAULT_WIDTH: int = 120
DEFAULT_PALETTE: str = "detailed"
DEFAULT_EFFECT: str = "enhance"
DEFAULT_THEME: str = "matrix"


@dataclass(frozen=True)
class Settings:
    """
    Immutable configuration for one conversion run.

    Identifiers (*palette*, *effect*, *theme*) are resolved against the
    registries when the run or export uses them, so an unknown name fails
    that run with ``InvalidSettings`` rather than at construction time.
    """

    width: int = DEFAULT_WIDTH
    brightness: float = 1.0
    contrast: float = 1.0
    palette: str = DEFAULT_PALETTE
    effect: str = DEFAULT_EFFECT
    adaptive: bool = True
    aspect_correction: bool = True
    double_width: bool = False
    spacing: bool = False
    reverse_colors: bool = False
    theme: str = DEFAULT_THEME

    def __post_init__(self) -> None:
        if isinstance(self.width, bool) or not isinstance(self.width, int):
            raise InvalidDimension(f"width must be an integer, got {self.width!r}")
        if self.width <= 0:
            raise InvalidDimension(f"width must be positive, got {self.width}")
        for field in ("brightness", "contrast"):
            value = getattr(self, field)
            if (isinstance(value, bool) or not isinstance(value, (int, float))
                    or not math.isfinite(value) or value <= 0):
                raise InvalidSettings(f"{field} must be a positive number, got {value!r}")

    def replace(self, **changes) -> "Settings":
        """Return a copy with *changes* applied (validated again)."""
        return dataclasses.replace(self, **changes)
