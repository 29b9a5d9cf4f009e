"""
Extraction of existing glyph runs from a PDF page.

The page's content stream is walked in document order with PyPDF2's
``extract_text`` visitor hooks.  Fill-colour operators update a single
"current colour"; each glyph run is attributed the colour that was current
when its first text-show operator was seen.  The colour state is global
to the stream and is not scoped per text object, so documents that
interleave unrelated drawing between a colour change and a text-show will
see the later colour.  That "last colour wins" behaviour is relied on by
inline editing and is kept as is.
"""

import logging
import math
import re
from io import BytesIO
from typing import Any, List, Optional, Sequence, Tuple

from PyPDF2 import PdfReader

from .errors import DocumentDecodeError
from .fonts import standard_font, text_width
from .models import RGB, TextBlock

logger = logging.getLogger(__name__)

BOLD_PATTERN = re.compile(r'Bold|Semibold|Medium', re.IGNORECASE)
ITALIC_PATTERN = re.compile(r'Italic|Oblique', re.IGNORECASE)
_SUBSET_PREFIX = re.compile(r'^[A-Z]{6}\+')

BLACK: RGB = (0.0, 0.0, 0.0)
TEXT_SHOW_OPERATORS = (b'Tj', b'TJ', b"'", b'"')
NEXT_LINE_SHOW_OPERATORS = (b"'", b'"')

# (cm, tm) where a glyph run starts
Origin = Tuple[List[float], List[float]]


def _unit(value: Any) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num):
        return 0.0
    return max(0.0, min(1.0, num))


def _numeric(operands: Sequence[Any]) -> List[float]:
    out = []
    for op in operands:
        try:
            out.append(float(op))
        except (TypeError, ValueError):
            return []
    return out


def font_display_name(font_dict: Any) -> str:
    """Return the font's base name without the leading slash or subset tag."""
    name = ''
    if font_dict is not None:
        try:
            name = str(font_dict.get('/BaseFont') or '')
        except AttributeError:
            name = ''
    name = name.lstrip('/')
    return _SUBSET_PREFIX.sub('', name) or 'Helvetica'


class _RunCollector:
    def __init__(self, page_number: int) -> None:
        self.page_number = page_number
        self.color: RGB = BLACK
        self.run_color: Optional[RGB] = None
        self.run_origin: Optional[Origin] = None
        self.next_origin: Optional[Origin] = None
        self.leading = 0.0
        self.blocks: List[TextBlock] = []

    def _origin(self, operator: bytes, cm: Any, tm: Any) -> Origin:
        # The matrices are updated in place as the stream advances.
        cm = [float(v) for v in cm]
        tm = [float(v) for v in tm]
        if operator in NEXT_LINE_SHOW_OPERATORS:
            tm[4] -= self.leading * tm[2]
            tm[5] -= self.leading * tm[3]
        return cm, tm

    def before_operator(self, operator: bytes, operands: List[Any], cm: Any, tm: Any) -> None:
        if operator == b'TL' and operands:
            self.leading = float(operands[0])
        elif operator == b'TD' and len(operands) >= 2:
            self.leading = -float(operands[1])

        # A run's text only reaches on_text once the next line move has
        # been applied, so its origin is taken from its first show operator.
        if operator in TEXT_SHOW_OPERATORS:
            if self.run_origin is None:
                self.run_origin = self._origin(operator, cm, tm)
            elif operator in NEXT_LINE_SHOW_OPERATORS:
                # The line move flushes the open run first.
                self.next_origin = self._origin(operator, cm, tm)

        if operator == b'rg' and len(operands) >= 3:
            self.color = (_unit(operands[0]), _unit(operands[1]), _unit(operands[2]))
        elif operator == b'g' and operands:
            gray = _unit(operands[0])
            self.color = (gray, gray, gray)
        elif operator in (b'sc', b'scn'):
            values = _numeric(operands)
            if len(values) == 3:
                self.color = tuple(_unit(v) for v in values)  # type: ignore[assignment]
            elif len(values) == 1:
                gray = _unit(values[0])
                self.color = (gray, gray, gray)
        elif operator == b'cs':
            self.color = BLACK
        elif operator in TEXT_SHOW_OPERATORS and self.run_color is None:
            self.run_color = self.color

    def on_text(self, text: str, cm: Any, tm: Any, font_dict: Any, font_size: float) -> None:
        color = self.run_color or self.color
        if self.run_origin is not None:
            cm, tm = self.run_origin
        self.run_color = None
        self.run_origin, self.next_origin = self.next_origin, None
        text = (text or '').strip('\r\n')
        if not text.strip():
            return

        x = tm[4] * cm[0] + tm[5] * cm[2] + cm[4]
        y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
        scale_y = math.hypot(tm[2], tm[3]) * math.hypot(cm[2], cm[3])
        size = abs(float(font_size or 0) * scale_y) or float(font_size or 12)

        font_name = font_display_name(font_dict)
        is_bold = bool(BOLD_PATTERN.search(font_name))
        is_italic = bool(ITALIC_PATTERN.search(font_name))
        width = text_width(text, standard_font(is_bold, is_italic), size)

        self.blocks.append(TextBlock(
            text=text,
            x=x,
            y=y,
            width=width,
            height=size,
            font_name=font_name,
            font_size=size,
            is_bold=is_bold,
            is_italic=is_italic,
            color=color,
            page=self.page_number,
        ))


def extract_text_blocks(data: bytes, page_number: int = 1, strict: bool = False) -> List[TextBlock]:
    """Return the glyph runs on ``page_number`` (1-based) in document order.

    Decoding problems yield an empty list, or raise
    :class:`DocumentDecodeError` when ``strict`` is set so callers can keep
    their previous result.
    """
    collector = _RunCollector(page_number)
    try:
        reader = PdfReader(BytesIO(data))
        page = reader.pages[page_number - 1]
        page.extract_text(
            visitor_operand_before=collector.before_operator,
            visitor_text=collector.on_text,
        )
    except Exception as exc:
        logger.warning('Text extraction failed on page %s: %s', page_number, exc)
        if strict:
            raise DocumentDecodeError(str(exc)) from exc
        return []
    return collector.blocks


def page_height(data: bytes, page_number: int = 1) -> float:
    reader = PdfReader(BytesIO(data))
    return float(reader.pages[page_number - 1].mediabox.height)
