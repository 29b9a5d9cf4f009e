"""
Tests for glyph-run extraction from page content streams.
"""

import pytest

from conftest import make_pdf
from pdf_collab.errors import DocumentDecodeError
from pdf_collab.extraction import extract_text_blocks, font_display_name, page_height


def _block(blocks, text):
    return next(b for b in blocks if b.text.strip() == text)


class TestExtractTextBlocks:
    """Tests for extract_text_blocks."""

    def test_positions_and_fonts(self, invoice_pdf):
        blocks = extract_text_blocks(invoice_pdf, 1)
        invoice = _block(blocks, 'Invoice')
        total = _block(blocks, 'Total')

        assert invoice.x == pytest.approx(72, abs=0.5)
        assert invoice.y == pytest.approx(760, abs=0.5)
        assert invoice.font_size == pytest.approx(18)
        assert invoice.font_name == 'Helvetica-Bold'
        assert invoice.is_bold and not invoice.is_italic
        assert invoice.width > 0

        assert total.y == pytest.approx(700, abs=0.5)
        assert not total.is_bold

    def test_multi_line_text_object_keeps_each_baseline(self):
        def draw(c, _page):
            text = c.beginText(72, 760)
            text.setFont('Helvetica', 12, leading=14.4)
            for line in ('First', 'Second', 'Third'):
                text.textLine(line)
            c.drawText(text)
        blocks = extract_text_blocks(make_pdf(draw=draw), 1)

        assert _block(blocks, 'First').y == pytest.approx(760, abs=0.5)
        assert _block(blocks, 'Second').y == pytest.approx(745.6, abs=0.5)
        assert _block(blocks, 'Third').y == pytest.approx(731.2, abs=0.5)
        assert all(b.x == pytest.approx(72, abs=0.5) for b in blocks)

    def test_next_line_show_operator(self):
        def draw(c, _page):
            c.setFont('Helvetica', 12)
            font = c._doc.getInternalFontName('Helvetica')
            c.addLiteral(f"BT {font} 12 Tf 14 TL 1 0 0 1 100 500 Tm (Alpha) Tj (Beta) ' ET")
        blocks = extract_text_blocks(make_pdf(draw=draw), 1)

        assert _block(blocks, 'Alpha').y == pytest.approx(500, abs=0.5)
        assert _block(blocks, 'Beta').y == pytest.approx(486, abs=0.5)

    def test_document_order(self, invoice_pdf):
        texts = [b.text.strip() for b in extract_text_blocks(invoice_pdf, 1)]
        assert texts.index('Invoice') < texts.index('Total')

    def test_last_fill_color_wins(self, invoice_pdf):
        blocks = extract_text_blocks(invoice_pdf, 1)
        assert _block(blocks, 'Invoice').color == (1.0, 0.0, 0.0)
        assert _block(blocks, 'Total').color == (0.0, 0.0, 0.0)

    def test_grayscale_fill(self):
        def draw(c, _page):
            c.setFillGray(0.5)
            c.setFont('Helvetica-Oblique', 10)
            c.drawString(100, 400, 'Muted')
        blocks = extract_text_blocks(make_pdf(draw=draw), 1)
        muted = _block(blocks, 'Muted')
        assert muted.color == pytest.approx((0.5, 0.5, 0.5))
        assert muted.is_italic

    def test_other_page(self, two_page_pdf):
        blocks = extract_text_blocks(two_page_pdf, 2)
        assert [b.text.strip() for b in blocks] == ['Page 2']
        assert blocks[0].page == 2

    def test_blank_page_has_no_blocks(self, blank_pdf):
        assert extract_text_blocks(blank_pdf, 1) == []

    def test_garbage_yields_empty(self):
        assert extract_text_blocks(b'not a pdf', 1) == []

    def test_garbage_strict_raises(self):
        with pytest.raises(DocumentDecodeError):
            extract_text_blocks(b'not a pdf', 1, strict=True)


class TestFontDisplayName:
    @pytest.mark.parametrize('raw,expected', [
        ({'/BaseFont': '/ABCDEF+Arial-BoldMT'}, 'Arial-BoldMT'),
        ({'/BaseFont': '/Times-Roman'}, 'Times-Roman'),
        ({}, 'Helvetica'),
        (None, 'Helvetica'),
    ])
    def test_names(self, raw, expected):
        assert font_display_name(raw) == expected


def test_page_height(invoice_pdf):
    assert page_height(invoice_pdf, 1) == pytest.approx(842)
