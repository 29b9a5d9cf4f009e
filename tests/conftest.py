"""
Shared fixtures: small real PDFs built with ReportLab and images built with Pillow.
"""

from io import BytesIO

import pytest
from PIL import Image
from reportlab.pdfgen import canvas as rl_canvas

from pdf_collab.config import Config
from pdf_collab.errors import UploadFailed

PAGE_SIZE = (595.0, 842.0)


def make_pdf(pages=1, draw=None, pagesize=PAGE_SIZE):
    """Build a PDF; ``draw(canvas, page_number)`` paints each page."""
    buf = BytesIO()
    c = rl_canvas.Canvas(buf, pagesize=pagesize, invariant=1)
    for page_number in range(1, pages + 1):
        if draw is not None:
            draw(c, page_number)
        c.showPage()
    c.save()
    return buf.getvalue()


def make_image(fmt='PNG', size=(40, 20), mode='RGB', color=(255, 0, 0)):
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def _invoice(c, page_number):
    if page_number != 1:
        c.setFont('Helvetica', 12)
        c.drawString(72, 760, f'Page {page_number}')
        return
    c.setFillColorRGB(1, 0, 0)
    c.setFont('Helvetica-Bold', 18)
    c.drawString(72, 760, 'Invoice')
    c.setFillColorRGB(0, 0, 0)
    c.setFont('Helvetica', 12)
    c.drawString(72, 700, 'Total')


@pytest.fixture
def blank_pdf():
    return make_pdf()


@pytest.fixture
def invoice_pdf():
    """One page: red bold 'Invoice' at (72, 760) and black 'Total' at (72, 700)."""
    return make_pdf(draw=_invoice)


@pytest.fixture
def two_page_pdf():
    return make_pdf(pages=2, draw=_invoice)


@pytest.fixture
def png_bytes():
    return make_image('PNG', size=(300, 150))


@pytest.fixture
def jpeg_bytes():
    return make_image('JPEG', size=(60, 40))


@pytest.fixture
def config(tmp_path):
    return Config(
        upload_dir=tmp_path / 'uploads',
        doc_state_dir=None,
        client_origin='*',
        max_upload_mb=1,
        room_idle_seconds=3600,
        history_limit=50,
    )


class FakeUploader:
    """Blob upload capability that records buffers in memory."""

    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    def upload(self, data, filename='edited.pdf', content_type='application/pdf'):
        if self.fail:
            raise UploadFailed('server unreachable')
        self.uploads.append(bytes(data))
        return f'/uploads/{len(self.uploads)}.pdf'


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def failing_uploader():
    return FakeUploader(fail=True)
