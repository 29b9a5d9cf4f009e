"""Standard-14 font selection and measurement."""

from reportlab.pdfbase import pdfmetrics

STANDARD_FONTS = {
    (False, False): 'Helvetica',
    (True, False): 'Helvetica-Bold',
    (False, True): 'Helvetica-Oblique',
    (True, True): 'Helvetica-BoldOblique',
}


def standard_font(bold: bool = False, italic: bool = False) -> str:
    return STANDARD_FONTS[(bool(bold), bool(italic))]


def text_width(text: str, font_name: str, size: float) -> float:
    return pdfmetrics.stringWidth(text, font_name, size)
