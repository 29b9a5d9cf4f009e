"""
Coordinate mapping between the on-screen overlay and PDF point space.

Screen positions have their origin at the top-left corner of the rendered
page and are multiplied by the zoom factor.  PDF positions have their
origin at the bottom-left corner and are unscaled.  The anchor of an
annotation in PDF space is its bottom-left corner, so the annotation's own
height takes part in the vertical flip.
"""

from typing import NamedTuple

MIN_SCALE = 0.5
MAX_SCALE = 2.0


class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float


def to_pdf_space(screen: Rect, page_height: float, scale: float) -> Rect:
    """Map a screen rectangle (left, top, width, height) to PDF space."""
    x = screen.x / scale
    y = page_height - screen.y / scale - screen.height / scale
    return Rect(x, y, screen.width / scale, screen.height / scale)


def to_screen_space(pdf: Rect, page_height: float, scale: float) -> Rect:
    """Inverse of :func:`to_pdf_space`."""
    left = pdf.x * scale
    top = (page_height - pdf.y - pdf.height) * scale
    return Rect(left, top, pdf.width * scale, pdf.height * scale)


def clamp_scale(scale: float) -> float:
    return max(MIN_SCALE, min(MAX_SCALE, float(scale)))
