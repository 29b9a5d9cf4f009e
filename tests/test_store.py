"""
Tests for the page-indexed annotation store.
"""

import pytest

from pdf_collab.errors import PatchError
from pdf_collab.models import Box, ImageAnnotation, MoveTo
from pdf_collab.store import AnnotationStore


def _box(box_id, **kwargs):
    return Box(id=box_id, left=kwargs.pop('left', 0), top=kwargs.pop('top', 0), **kwargs)


class TestAnnotationStore:
    """Tests for AnnotationStore."""

    def test_add_preserves_insertion_order(self):
        store = AnnotationStore()
        store.add_box(1, _box('a'))
        store.add_box(1, _box('b'))
        result = store.add_box(2, _box('c'))
        assert [b.id for b in store.boxes[1]] == ['a', 'b']
        assert [b.id for b in result.items] == ['c']

    def test_update_applies_patch(self):
        store = AnnotationStore()
        store.add_box(1, _box('a'))
        result = store.update_box(1, 'a', {'left': 30, 'top': 40})
        assert result.found
        assert (result.items[0].left, result.items[0].top) == (30, 40)

    def test_update_missing_id_is_noop(self):
        store = AnnotationStore()
        store.add_box(1, _box('a', text='Hello'))
        before = list(store.boxes[1])
        result = store.update_box(1, 'ghost', MoveTo(1, 1))
        assert result.found is False
        assert store.boxes[1] == before

    def test_update_on_unknown_page_is_noop(self):
        store = AnnotationStore()
        result = store.update_image(4, 'ghost', {'width': 5, 'height': 5})
        assert result == ([], False)
        assert 4 not in store.images

    def test_update_rejects_malformed_patch(self):
        store = AnnotationStore()
        store.add_box(1, _box('a'))
        with pytest.raises(PatchError):
            store.update_box(1, 'a', {'bogus': 1})

    def test_delete(self):
        store = AnnotationStore()
        store.add_box(1, _box('a'))
        store.add_box(1, _box('b'))
        assert store.delete_box(1, 'a').found
        assert [b.id for b in store.boxes[1]] == ['b']
        assert store.delete_box(1, 'a').found is False

    def test_string_page_keys(self):
        store = AnnotationStore()
        store.add_box('3', _box('a'))
        assert store.get_box(3, 'a') is not None

    def test_set_locked_across_pages(self):
        store = AnnotationStore()
        store.add_box(2, _box('a'))
        assert store.set_locked('a', True)
        assert store.get_box(2, 'a').locked
        assert store.set_locked('a', False)
        assert not store.get_box(2, 'a').locked
        assert store.set_locked('ghost', True) is False

    def test_remote_mirrors(self):
        store = AnnotationStore()
        store.apply_remote_add_box(1, {'id': 'b1', 'left': 5, 'top': 6, 'text': 'Hi'})
        store.apply_remote_update_box(1, 'b1', {'text': 'Hello'})
        store.apply_remote_add_image(1, {'id': 'i1', 'left': 0, 'top': 0, 'width': 10, 'height': 10})
        store.apply_remote_delete_image(1, 'i1')
        assert store.get_box(1, 'b1').text == 'Hello'
        assert store.images[1] == []

    def test_state_round_trip(self):
        store = AnnotationStore()
        store.add_box(1, _box('a', text='Hello'))
        store.add_image(2, ImageAnnotation(id='i1', left=1, top=2, width=3, height=4,
                                           image_bytes=b'xyz'))
        copy = AnnotationStore.from_state(store.boxes_dict(), store.images_dict())
        assert copy.get_box(1, 'a').text == 'Hello'
        assert copy.get_image(2, 'i1').image_bytes == b'xyz'
