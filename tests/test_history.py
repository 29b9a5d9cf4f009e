"""
Tests for the undo/redo snapshot log.
"""

import pytest

from pdf_collab.history import HistoryStack


class TestHistoryStack:
    """Tests for HistoryStack."""

    def test_empty_stack(self):
        history = HistoryStack()
        assert history.cursor == -1
        assert history.current is None
        assert history.undo() is None
        assert history.redo() is None

    def test_push_advances_cursor(self):
        history = HistoryStack()
        for i in range(5):
            history.push(b'v%d' % i)
        assert history.cursor == 4
        assert not history.can_redo
        assert history.redo() is None

    def test_undo_redo_undo_restores_snapshot(self):
        history = HistoryStack()
        for i in range(3):
            history.push(b'v%d' % i, f'/uploads/{i}.pdf')
        prior = history.undo()
        assert prior.data == b'v1'
        assert history.redo().data == b'v2'
        again = history.undo()
        assert again.data == prior.data
        assert again.url == '/uploads/1.pdf'

    def test_undo_stops_at_first_entry(self):
        history = HistoryStack()
        history.push(b'only')
        assert history.undo() is None
        assert history.cursor == 0

    def test_push_truncates_redo_entries(self):
        history = HistoryStack()
        for data in (b'a', b'b', b'c'):
            history.push(data)
        history.undo()
        history.undo()
        history.push(b'd')
        assert len(history) == 2
        assert history.current.data == b'd'
        assert not history.can_redo

    def test_entries_are_copies(self):
        history = HistoryStack()
        buf = bytearray(b'abc')
        history.push(buf)
        buf[0] = ord('z')
        assert history.current.data == b'abc'

    def test_limit_evicts_oldest(self):
        history = HistoryStack(limit=3)
        for i in range(5):
            history.push(b'v%d' % i)
        assert len(history) == 3
        assert history.cursor == 2
        assert history.undo().data == b'v3'
        assert history.undo().data == b'v2'
        assert history.undo() is None

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            HistoryStack(limit=0)
