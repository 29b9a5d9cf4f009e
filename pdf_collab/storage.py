"""
Blob storage for uploaded and recomposed files.

Files live in a single upload folder and are served back under
``/uploads/<name>``.  Every stored file gets a fresh ``uuid4`` name so
concurrent uploads can never clash.  Type checks happen before anything
touches the disk.
"""

import logging
import uuid
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Union

from werkzeug.utils import secure_filename

from .errors import UploadFailed, UploadRejected

logger = logging.getLogger(__name__)

PDF_TYPE = 'application/pdf'
IMAGE_TYPES = {
    'image/jpeg': '.jpg',
    'image/jpg': '.jpg',
    'image/png': '.png',
    'image/gif': '.gif',
    'image/webp': '.webp',
    'image/bmp': '.bmp',
}
ALLOWED_UPLOAD_TYPES = {PDF_TYPE: '.pdf', **IMAGE_TYPES}

URL_PREFIX = '/uploads/'


def validate_upload(filename: Optional[str], content_type: Optional[str]) -> str:
    """Check a declared upload and return the extension to store it under.

    The extension always follows the declared type, never the client's
    filename, so stored files are served back with the type that was
    checked.  Raises :class:`UploadRejected` for a missing file or a type
    that is neither PDF nor a supported image.
    """
    if not filename:
        raise UploadRejected('No file uploaded')
    declared = (content_type or '').split(';', 1)[0].strip().lower()
    if declared not in ALLOWED_UPLOAD_TYPES:
        raise UploadRejected('Only PDF and image files are allowed')
    return ALLOWED_UPLOAD_TYPES[declared]


class BlobStore:
    """Local-disk storage rooted at ``folder``."""

    def __init__(self, folder: Union[str, Path]) -> None:
        self.folder = Path(folder)
        self.folder.mkdir(parents=True, exist_ok=True)

    def _unique_path(self, ext: str) -> Path:
        return self.folder / f"{uuid.uuid4().hex}{ext}"

    def save_bytes(self, data: bytes, ext: str = '.pdf') -> str:
        path = self._unique_path(ext)
        path.write_bytes(data)
        logger.debug('Stored %d bytes as %s', len(data), path.name)
        return URL_PREFIX + path.name

    def save_stream(self, stream: BinaryIO, ext: str) -> str:
        path = self._unique_path(ext)
        with open(path, 'wb') as fh:
            while True:
                chunk = stream.read(64 * 1024)
                if not chunk:
                    break
                fh.write(chunk)
        return URL_PREFIX + path.name

    def path_for(self, name: str) -> Path:
        """Resolve a stored name (or ``/uploads/<name>`` URL) to its path."""
        if name.startswith(URL_PREFIX):
            name = name[len(URL_PREFIX):]
        return self.folder / secure_filename(name)


class LocalUploader:
    """Blob upload capability backed directly by a :class:`BlobStore`."""

    def __init__(self, store: BlobStore) -> None:
        self.store = store

    def upload(self, data: bytes, filename: str = 'edited.pdf',
               content_type: str = PDF_TYPE) -> str:
        ext = validate_upload(filename, content_type)
        try:
            return self.store.save_bytes(data, ext)
        except OSError as exc:
            raise UploadFailed(str(exc)) from exc


class EphemeralBlobs:
    """Process-local references for buffers that could not be uploaded."""

    PREFIX = 'blob:local/'

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}

    def put(self, data: bytes) -> str:
        ref = self.PREFIX + uuid.uuid4().hex
        self._blobs[ref] = bytes(data)
        return ref

    def get(self, ref: str) -> Optional[bytes]:
        return self._blobs.get(ref)

    def release(self, ref: str) -> None:
        self._blobs.pop(ref, None)

    def __contains__(self, ref: object) -> bool:
        return ref in self._blobs
