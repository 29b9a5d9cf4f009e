"""
Tests for upload validation and blob storage.
"""

from io import BytesIO

import pytest

from pdf_collab.errors import UploadFailed, UploadRejected
from pdf_collab.storage import BlobStore, EphemeralBlobs, LocalUploader, validate_upload


class TestValidateUpload:
    @pytest.mark.parametrize('name,content_type,ext', [
        ('report.PDF', 'application/pdf', '.pdf'),
        ('photo.jpeg', 'image/jpeg', '.jpg'),
        ('page.html', 'image/png', '.png'),
        ('scan.pdf', 'image/gif', '.gif'),
        ('scan', 'image/png', '.png'),
        ('x.webp', 'image/webp; charset=binary', '.webp'),
    ])
    def test_accepted(self, name, content_type, ext):
        assert validate_upload(name, content_type) == ext

    @pytest.mark.parametrize('name,content_type', [
        ('notes.txt', 'text/plain'),
        ('evil.pdf', 'application/x-msdownload'),
        ('pic.svg', 'image/svg+xml'),
        ('anything.pdf', None),
    ])
    def test_rejected(self, name, content_type):
        with pytest.raises(UploadRejected) as info:
            validate_upload(name, content_type)
        assert info.value.status == 400

    def test_missing_file(self):
        with pytest.raises(UploadRejected, match='No file uploaded'):
            validate_upload('', 'application/pdf')


class TestBlobStore:
    def test_unique_names(self, tmp_path):
        store = BlobStore(tmp_path / 'uploads')
        first = store.save_bytes(b'one')
        second = store.save_bytes(b'two')
        assert first != second
        assert first.startswith('/uploads/') and first.endswith('.pdf')
        assert store.path_for(first).read_bytes() == b'one'

    def test_save_stream(self, tmp_path):
        store = BlobStore(tmp_path)
        url = store.save_stream(BytesIO(b'x' * 200_000), '.png')
        assert store.path_for(url).stat().st_size == 200_000

    def test_path_for_stays_in_folder(self, tmp_path):
        store = BlobStore(tmp_path)
        assert store.path_for('../../etc/passwd').parent == tmp_path


class TestLocalUploader:
    def test_upload(self, tmp_path):
        store = BlobStore(tmp_path)
        url = LocalUploader(store).upload(b'%PDF-1.4')
        assert store.path_for(url).read_bytes() == b'%PDF-1.4'

    def test_write_error_becomes_upload_failed(self, tmp_path):
        store = BlobStore(tmp_path / 'gone')
        (tmp_path / 'gone').rmdir()
        with pytest.raises(UploadFailed):
            LocalUploader(store).upload(b'%PDF-1.4')


class TestEphemeralBlobs:
    def test_put_get_release(self):
        blobs = EphemeralBlobs()
        ref = blobs.put(bytearray(b'abc'))
        assert ref.startswith('blob:local/')
        assert blobs.get(ref) == b'abc'
        blobs.release(ref)
        assert ref not in blobs
        assert blobs.get(ref) is None
