"""
Rebuild a PDF byte stream from the original document plus the current
annotation set.

Every call starts again from the original bytes and never from a previous
result, so repeated edits cannot pile up stale or duplicated draw calls.
For each page that carries annotations a one-page overlay is drawn with
ReportLab (text boxes first, then images) and merged over the source page
with PyPDF2, the same way the export route has always worked.

A single malformed annotation never aborts the rebuild: its error is
logged, recorded on the :class:`RecomposeResult` and the annotation is
skipped.

Inline editing of an existing glyph run goes through
:func:`replace_text_block`, which works on the *current* bytes instead:
it paints an opaque cover over the old run and draws the replacement at
the same baseline in the run's own font, size and colour.
"""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional, Sequence

from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.generic import BooleanObject, NameObject
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as rl_canvas

from .errors import DocumentDecodeError, UploadFailed
from .extraction import extract_text_blocks
from .fonts import standard_font, text_width
from .geometry import Rect, to_pdf_space
from .history import HistoryStack
from .models import RGB, Box, ImageAnnotation, TextBlock, hex_to_rgb01
from .storage import PDF_TYPE, EphemeralBlobs

logger = logging.getLogger(__name__)

# Image MIME type -> Pillow decoder.  Anything else is tried as PNG.
IMAGE_DECODERS = {
    'image/png': 'PNG',
    'image/jpeg': 'JPEG',
    'image/jpg': 'JPEG',
}


@dataclass
class TextDraw:
    page: int
    x: float
    y: float
    text: str
    font: str
    size: float
    color: RGB


@dataclass
class ImageDraw:
    page: int
    image_id: str
    x: float
    y: float
    width: float
    height: float
    image: Any = field(repr=False, default=None)


@dataclass
class RecomposeResult:
    data: bytes = field(repr=False)
    url: Optional[str] = None
    uploaded: bool = False
    text_draws: List[TextDraw] = field(default_factory=list)
    image_draws: List[ImageDraw] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    text_blocks: List[TextBlock] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

def plan_box(page: int, box: Box, page_height: float, scale: float) -> Optional[TextDraw]:
    """Return the draw instruction for a box, or None for placeholder text."""
    if not box.is_drawable:
        return None
    anchor = to_pdf_space(Rect(box.left, box.top, box.width, box.height), page_height, scale)
    return TextDraw(
        page=page,
        x=anchor.x,
        y=anchor.y,
        text=box.text,
        font=standard_font(bold=box.is_bold),
        size=box.font_size,
        color=hex_to_rgb01(box.color),
    )


def decode_image(data: bytes, mime: str) -> Image.Image:
    """Decode image bytes with the decoder matching the declared type.

    A declared type without a dedicated decoder is attempted as PNG.  The
    result is flattened onto white so transparent pixels do not render as
    black boxes in some viewers.
    """
    fmt = IMAGE_DECODERS.get((mime or '').lower(), 'PNG')
    try:
        img = Image.open(BytesIO(data), formats=[fmt])
        img.load()
    except (UnidentifiedImageError, OSError):
        if fmt == 'PNG':
            raise
        img = Image.open(BytesIO(data), formats=['PNG'])
        img.load()
    if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != 'RGB':
        img = img.convert('RGB')
    return img


def plan_image(page: int, image: ImageAnnotation, page_height: float, scale: float) -> ImageDraw:
    rect = to_pdf_space(Rect(image.left, image.top, image.width, image.height), page_height, scale)
    return ImageDraw(
        page=page,
        image_id=image.id,
        x=max(0.0, rect.x),
        y=max(0.0, rect.y),
        width=rect.width,
        height=rect.height,
        image=decode_image(image.image_bytes, image.image_type),
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_overlay(page: Any, text_draws: Sequence[TextDraw], image_draws: Sequence[ImageDraw],
                    offset: Sequence[float] = (0.0, 0.0)):
    """Draw the instructions onto a blank one-page PDF matching ``page``."""
    box = page.mediabox
    dx, dy = offset
    buf = BytesIO()
    canv = rl_canvas.Canvas(buf, pagesize=(float(box.right), float(box.top)), invariant=1)
    for op in text_draws:
        canv.setFont(op.font, op.size)
        canv.setFillColorRGB(*op.color)
        canv.drawString(dx + op.x, dy + op.y, op.text)
    for op in image_draws:
        canv.drawImage(ImageReader(op.image), dx + op.x, dy + op.y,
                       width=op.width, height=op.height)
    canv.save()
    buf.seek(0)
    return PdfReader(buf).pages[0]


def _carry_forms(reader: PdfReader, writer: PdfWriter) -> None:
    """Copy the AcroForm dictionary so interactive fields survive."""
    root = reader.trailer['/Root'].get_object()
    if '/AcroForm' in root:
        writer._root_object.update({NameObject('/AcroForm'): root['/AcroForm']})
        writer._root_object['/AcroForm'].update({NameObject('/NeedAppearances'): BooleanObject(True)})


def _open(data: bytes) -> PdfReader:
    try:
        return PdfReader(BytesIO(data))
    except Exception as exc:
        raise DocumentDecodeError(f"Failed to read PDF: {exc}") from exc


def _serialize(writer: PdfWriter) -> bytes:
    out_buf = BytesIO()
    writer.write(out_buf)
    return out_buf.getvalue()


def recompose(original: bytes,
              boxes_by_page: Mapping[Any, Sequence[Box]],
              images_by_page: Mapping[Any, Sequence[ImageAnnotation]],
              scale: float) -> RecomposeResult:
    """Draw every box and image onto a fresh copy of ``original``.

    Returns the new bytes together with the draw instructions that were
    issued and any per-annotation errors.  Only an unreadable original
    raises (:class:`DocumentDecodeError`).
    """
    reader = _open(original)
    num_pages = len(reader.pages)
    result = RecomposeResult(data=b'')

    pages = sorted({int(p) for p in boxes_by_page} | {int(p) for p in images_by_page})
    text_by_page: Dict[int, List[TextDraw]] = {}
    images_for_page: Dict[int, List[ImageDraw]] = {}

    for page_number in pages:
        if not 1 <= page_number <= num_pages:
            result.errors.append(f"page {page_number} does not exist")
            logger.warning('Skipping annotations on missing page %s', page_number)
            continue
        page = reader.pages[page_number - 1]
        if page.get('/Rotate', 0) and hasattr(page, 'transfer_rotation_to_content'):
            # Fold rotation into the content so screen coordinates line up.
            page.transfer_rotation_to_content()
        height = float(page.mediabox.height)

        for box in boxes_by_page.get(page_number, boxes_by_page.get(str(page_number), [])):
            op = plan_box(page_number, box, height, scale)
            if op is not None:
                text_by_page.setdefault(page_number, []).append(op)

        for image in images_by_page.get(page_number, images_by_page.get(str(page_number), [])):
            try:
                op = plan_image(page_number, image, height, scale)
            except Exception as exc:
                message = f"image {image.id} on page {page_number}: {exc}"
                result.errors.append(message)
                logger.warning('Skipping undecodable %s', message)
                continue
            images_for_page.setdefault(page_number, []).append(op)

    writer = PdfWriter()
    for index, page in enumerate(reader.pages):
        page_number = index + 1
        text_ops = text_by_page.get(page_number, [])
        image_ops = images_for_page.get(page_number, [])
        if text_ops or image_ops:
            offset = (float(page.mediabox.left), float(page.mediabox.bottom))
            page.merge_page(_render_overlay(page, text_ops, image_ops, offset))
            result.text_draws.extend(text_ops)
            result.image_draws.extend(image_ops)
        writer.add_page(page)

    _carry_forms(reader, writer)
    result.data = _serialize(writer)
    return result


# ---------------------------------------------------------------------------
# Inline replacement of an existing glyph run
# ---------------------------------------------------------------------------

def _channel(value: float) -> float:
    value = float(value)
    if value > 1:
        value = value / 255
    return max(0.0, min(1.0, value))


def replace_text_block(current: bytes, block: TextBlock, new_text: str) -> bytes:
    """Cover ``block`` on the current document and draw ``new_text`` in its place.

    The block's own font weight, style, size and colour are used; the
    session's font controls only affect newly placed boxes.
    """
    reader = _open(current)
    page = reader.pages[block.page - 1]

    font = standard_font(block.is_bold, block.is_italic)
    size = block.font_size
    # Cover the wider of the old and new strings plus a hair of margin,
    # and only the glyph height so neighbouring table rules stay visible.
    cover_width = max(text_width(block.text, font, size), text_width(new_text, font, size)) + 2
    glyph_height = block.height or size * 0.7
    cover_y = block.y - glyph_height * 0.2
    cover_height = glyph_height * 1.1

    box = page.mediabox
    buf = BytesIO()
    canv = rl_canvas.Canvas(buf, pagesize=(float(box.right), float(box.top)), invariant=1)
    canv.setFillColorRGB(1, 1, 1)
    canv.rect(block.x - 1, cover_y, cover_width, cover_height, stroke=0, fill=1)
    canv.setFillColorRGB(*(_channel(c) for c in block.color))
    canv.setFont(font, size)
    canv.drawString(block.x, block.y, new_text)
    canv.save()
    buf.seek(0)
    page.merge_page(PdfReader(buf).pages[0])

    writer = PdfWriter()
    for each in reader.pages:
        writer.add_page(each)
    _carry_forms(reader, writer)
    return _serialize(writer)


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

class Recomposer:
    """Runs the pipeline end to end: rebuild, upload, record, re-extract."""

    def __init__(self, uploader: Any, history: HistoryStack,
                 ephemeral: Optional[EphemeralBlobs] = None) -> None:
        self.uploader = uploader
        self.history = history
        self.ephemeral = ephemeral or EphemeralBlobs()

    def publish(self, data: bytes) -> RecomposeResult:
        """Upload ``data``; fall back to a local reference if that fails."""
        result = RecomposeResult(data=data)
        try:
            if self.uploader is None:
                raise UploadFailed('no uploader configured')
            result.url = self.uploader.upload(data, 'edited.pdf', PDF_TYPE)
            result.uploaded = True
        except UploadFailed as exc:
            logger.warning('Upload failed, keeping a local copy: %s', exc)
            result.url = self.ephemeral.put(data)
        return result

    def _finish(self, result: RecomposeResult) -> RecomposeResult:
        published = self.publish(result.data)
        result.url = published.url
        result.uploaded = published.uploaded
        self.history.push(result.data, result.url)
        result.text_blocks = extract_text_blocks(result.data, 1)
        return result

    def run(self, original: bytes, boxes_by_page: Mapping[Any, Sequence[Box]],
            images_by_page: Mapping[Any, Sequence[ImageAnnotation]], scale: float) -> RecomposeResult:
        result = recompose(original, boxes_by_page, images_by_page, scale)
        if result.errors:
            logger.warning('Recomposition skipped %d annotation(s)', len(result.errors))
        return self._finish(result)

    def edit_text_block(self, current: bytes, block: TextBlock, new_text: str) -> RecomposeResult:
        return self._finish(RecomposeResult(data=replace_text_block(current, block, new_text)))
