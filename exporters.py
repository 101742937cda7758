"""
exporters.py — Serialise assembled ASCII art as plain text or as a themed,
self-contained HTML page.
"""

from __future__ import annotations

import html
import os
from dataclasses import dataclass

from ascii_settings import Theme, get_theme
from errors import InvalidSettings

PLAIN = "plain"
HTML = "html"
FORMATS = (PLAIN, HTML)

PLAIN_FILENAME = "ascii-art.txt"
HTML_FILENAME = "ascii-art.html"

# Hex alpha suffix appended to the foreground colour for the container glow.
GLOW_ALPHA = "33"

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <title>Super Realistic ASCII Art</title>
    <style>
        body {{
            font-family: 'Courier New', monospace;
            background: {bg};
            color: {fg};
            margin: 20px;
            white-space: pre;
            line-height: 1;
            overflow-x: auto;
        }}
        .ascii-art {{
            border: 2px solid {fg};
            padding: 20px;
            border-radius: 5px;
            box-shadow: 0 0 20px {fg}{glow};
        }}
    </style>
</head>
<body>
    <div class="ascii-art">{art}</div>
</body>
</html>"""


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    content: str
    media_type: str
    format: str


def render_plain(text: str) -> ExportArtifact:
    return ExportArtifact(PLAIN_FILENAME, text, "text/plain", PLAIN)


def render_html(text: str, theme: Theme) -> ExportArtifact:
    content = HTML_TEMPLATE.format(
        bg=theme.background,
        fg=theme.foreground,
        glow=GLOW_ALPHA,
        art=html.escape(text, quote=False),
    )
    return ExportArtifact(HTML_FILENAME, content, "text/html", HTML)


def export(art, theme="matrix", fmt: str = HTML) -> ExportArtifact:
    """
    Serialise *art* (an ``AsciiArtResult`` or a plain string).

    *theme* may be a ``Theme`` or a registry name.  The paper theme is always
    exported as plain text, whatever *fmt* asks for.
    """
    if fmt not in FORMATS:
        raise InvalidSettings(f"unknown export format {fmt!r} (choose from {', '.join(FORMATS)})")
    if not isinstance(theme, Theme):
        theme = get_theme(theme)
    text = art if isinstance(art, str) else art.text

    if fmt == PLAIN or theme.forces_plain:
        return render_plain(text)
    return render_html(text, theme)


def write_artifact(artifact: ExportArtifact, directory: str = ".") -> str:
    """Write *artifact* under *directory* as UTF-8 and return the path."""
    path = os.path.join(directory, artifact.filename)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(artifact.content)
    return path
