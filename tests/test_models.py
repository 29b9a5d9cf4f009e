"""
Tests for the annotation data model and patch parsing.
"""

import base64

import pytest

from pdf_collab.errors import PatchError
from pdf_collab.models import (PLACEHOLDER_TEXT, Box, ImageAnnotation, MoveTo, Resize, SetStyle,
                               SetText, hex_to_rgb01, parse_patch, rgb01_to_hex)


class TestParsePatch:
    """Each wire patch maps onto exactly one variant."""

    def test_move(self):
        assert parse_patch({'left': 10, 'top': 20.5}) == MoveTo(10.0, 20.5)

    def test_resize(self):
        assert parse_patch({'width': 80, 'height': 40}) == Resize(80.0, 40.0)

    def test_text(self):
        assert parse_patch({'text': 'Hi'}) == SetText('Hi')

    def test_style_subset(self):
        assert parse_patch({'fontSize': 14, 'isBold': True}) == SetStyle(14.0, None, True)

    def test_variant_passes_through(self):
        patch = MoveTo(1, 2)
        assert parse_patch(patch) is patch

    @pytest.mark.parametrize('raw', [
        None,
        {},
        {'left': 1},
        {'left': 1, 'top': 2, 'text': 'x'},
        {'left': '1', 'top': 2},
        {'width': 0, 'height': 10},
        {'text': 5},
        {'fontSize': -1},
        {'color': 'red'},
        {'isBold': 'yes'},
        {'id': 'b2'},
    ])
    def test_rejects_shape_free_objects(self, raw):
        with pytest.raises(PatchError):
            parse_patch(raw)

    def test_round_trip_dict(self):
        patch = SetStyle(font_size=16.0, color='#ff0000')
        assert parse_patch(patch.to_dict()) == patch


class TestBox:
    def test_defaults(self):
        box = Box(id='b1', left=1, top=2)
        assert box.width == 180
        assert box.height == 20
        assert box.text == PLACEHOLDER_TEXT
        assert not box.is_drawable

    @pytest.mark.parametrize('text,drawable', [
        ('Hello', True),
        ('   ', False),
        ('', False),
        (PLACEHOLDER_TEXT, False),
    ])
    def test_is_drawable(self, text, drawable):
        assert Box(id='b1', left=0, top=0, text=text).is_drawable is drawable

    def test_apply_returns_new_box(self):
        box = Box(id='b1', left=0, top=0)
        moved = box.apply(MoveTo(5, 6))
        assert (moved.left, moved.top) == (5, 6)
        assert (box.left, box.top) == (0, 0)

    def test_apply_style_keeps_unset_fields(self):
        box = Box(id='b1', left=0, top=0, color='#00ff00', is_bold=True)
        styled = box.apply(SetStyle(font_size=20.0))
        assert styled.font_size == 20
        assert styled.color == '#00ff00'
        assert styled.is_bold

    def test_wire_round_trip(self):
        wire = {'id': 'b1', 'left': 50, 'top': 100, 'width': 180, 'height': 20,
                'text': 'Hello', 'fontSize': 12, 'color': '#336699', 'isBold': True}
        box = Box.from_dict(wire)
        assert box.font_size == 12
        assert box.is_bold
        assert box.to_dict()['color'] == '#336699'

    def test_from_dict_requires_id(self):
        with pytest.raises(ValueError):
            Box.from_dict({'left': 1, 'top': 2})


class TestImageAnnotation:
    def test_accepts_only_move_and_resize(self):
        image = ImageAnnotation(id='i1', left=0, top=0, width=10, height=10)
        assert image.apply(Resize(20, 20)).width == 20
        with pytest.raises(PatchError):
            image.apply(SetText('x'))

    @pytest.mark.parametrize('encoded', [
        base64.b64encode(b'\x89PNG').decode('ascii'),
        'data:image/png;base64,' + base64.b64encode(b'\x89PNG').decode('ascii'),
        [0x89, 0x50, 0x4E, 0x47],
        {'0': 0x89, '1': 0x50, '2': 0x4E, '3': 0x47},
    ])
    def test_image_bytes_encodings(self, encoded):
        image = ImageAnnotation.from_dict({'id': 'i1', 'width': 5, 'height': 5,
                                           'imageBytes': encoded, 'imageType': 'IMAGE/PNG'})
        assert image.image_bytes == b'\x89PNG'
        assert image.image_type == 'image/png'


class TestColors:
    def test_hex_to_rgb01(self):
        assert hex_to_rgb01('#ff0000') == (1.0, 0.0, 0.0)
        assert hex_to_rgb01('nonsense') == (0.0, 0.0, 0.0)
        assert hex_to_rgb01(None) == (0.0, 0.0, 0.0)

    def test_rgb01_to_hex(self):
        assert rgb01_to_hex((1.0, 0.5, 0.0)) == '#ff8000'
