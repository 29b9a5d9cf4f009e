"""
Exception types shared across the collaborative editor.

Nothing here is process-fatal.  Each error marks an operation that is
skipped while the rest of the document state stays consistent.
"""


class PdfCollabError(Exception):
    """Base class for all editor errors."""


class UploadRejected(PdfCollabError):
    """An uploaded file was refused before anything was written."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


class UploadFailed(PdfCollabError):
    """The blob upload capability could not store a buffer."""


class PatchError(PdfCollabError):
    """A patch object does not match any of the explicit patch variants."""


class PlacementError(PdfCollabError):
    """An image could not be loaded for placement."""


class DocumentDecodeError(PdfCollabError):
    """The source bytes could not be parsed as a PDF."""
