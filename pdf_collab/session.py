"""
Editor-side session for one open document.

:class:`DocumentSession` turns user gestures (click to place, drag to move,
resize, inline text edits) into annotation store mutations, announces them
to the other editors through an emitter, and rebuilds the PDF at the
checkpoints where the visible document should change:

- a text box loses focus with real (non-placeholder) text,
- a drag that actually moved something ends,
- an image resize ends,
- an image is placed,
- a box or an image is deleted.

The session keeps a *base* document: the opened bytes plus any inline text
edits.  Every rebuild of the annotation overlay starts from that base, so
inline edits survive later box and image changes while the overlay itself
never piles up.

:class:`SocketSyncClient` connects a session to the collaboration server
with python-socketio.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import socketio
from PIL import Image, UnidentifiedImageError

from .config import Config
from .errors import DocumentDecodeError, PatchError, PlacementError
from .extraction import extract_text_blocks, page_height
from .geometry import Rect, clamp_scale, to_screen_space
from .history import DEFAULT_LIMIT, HistoryStack
from .models import (PLACEHOLDER_TEXT, Box, DEFAULT_COLOR, DEFAULT_FONT_SIZE,
                     ImageAnnotation, MoveTo, Resize, SetText, TextBlock)
from .recompose import Recomposer, RecomposeResult, replace_text_block
from .remote import IMAGE_LOAD_TIMEOUT, DocumentApi, HttpUploader, fetch_bytes
from .store import AnnotationStore
from .storage import EphemeralBlobs

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 1.2
SCALE_STEP = 0.1
DRAG_THRESHOLD = 3
DEFAULT_BOX_WIDTH = 180.0
MAX_PLACED_IMAGE = 150.0
MIN_IMAGE_WIDTH = 50.0
DOWNLOAD_NAME = 'edited-document.pdf'

# Events the server relays to a session.
REMOTE_EVENTS = (
    'init_state',
    'box_added', 'box_updated', 'box_deleted',
    'image_added', 'image_updated', 'image_deleted',
    'box_locked', 'box_unlocked',
)


class Tool(str, enum.Enum):
    SELECT = 'select'
    TEXT = 'text'
    IMAGE = 'image'
    DELETE = 'delete'


@dataclass
class _Gesture:
    kind: str  # 'box', 'image' or 'resize'
    page: int
    item_id: str
    start_left: float
    start_top: float
    start_width: float
    start_height: float
    moved: bool = False


def fit_within(width: float, height: float, limit: float = MAX_PLACED_IMAGE) -> Tuple[float, float]:
    """Shrink (never grow) ``width`` x ``height`` to fit a ``limit`` square."""
    if width > limit or height > limit:
        ratio = min(limit / width, limit / height)
        return width * ratio, height * ratio
    return float(width), float(height)


class DocumentSession:
    """The aggregate for one open document in one editor."""

    def __init__(self, doc_id: str, uploader: Any = None,
                 emit: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 doc_api: Optional[DocumentApi] = None,
                 history_limit: Optional[int] = DEFAULT_LIMIT,
                 id_factory: Callable[[], str] = lambda: str(uuid.uuid4())) -> None:
        self.doc_id = doc_id
        self.emit = emit or (lambda event, payload: None)
        self.doc_api = doc_api
        self.new_id = id_factory

        self.annotations = AnnotationStore()
        self.history = HistoryStack(history_limit)
        self.ephemeral = EphemeralBlobs()
        self.recomposer = Recomposer(uploader, self.history, self.ephemeral)

        self.base: Optional[bytes] = None
        self.text_blocks: List[TextBlock] = []
        self.scale = DEFAULT_SCALE
        self.tool = Tool.SELECT
        self.font_size = DEFAULT_FONT_SIZE
        self.color = DEFAULT_COLOR
        self.is_bold = False

        self._pending_image: Optional[Tuple[bytes, str]] = None
        self._gesture: Optional[_Gesture] = None

    @classmethod
    def from_config(cls, doc_id: str, config: Config, server_url: Optional[str] = None,
                    **kwargs: Any) -> 'DocumentSession':
        """Build a session with the configured history depth.

        With ``server_url`` the session uploads rebuilds to that server and
        saves its annotation state there unless other clients are passed.
        """
        if server_url:
            kwargs.setdefault('uploader', HttpUploader(server_url))
            kwargs.setdefault('doc_api', DocumentApi(server_url))
        return cls(doc_id, history_limit=config.history_limit, **kwargs)

    # -- document ---------------------------------------------------------

    @property
    def current_bytes(self) -> Optional[bytes]:
        entry = self.history.current
        return entry.data if entry else None

    @property
    def current_url(self) -> Optional[str]:
        entry = self.history.current
        return entry.url if entry else None

    def open(self, data: bytes, url: Optional[str] = None) -> None:
        """Load a document; it becomes the first history entry."""
        blocks = extract_text_blocks(data, 1, strict=True)
        self.base = bytes(data)
        self.history.clear()
        self.history.push(self.base, url)
        self.text_blocks = blocks
        logger.info('Opened %s (%d text block(s) on page 1)', self.doc_id, len(blocks))

    def recompose(self) -> Optional[RecomposeResult]:
        if self.base is None:
            return None
        result = self.recomposer.run(self.base, self.annotations.boxes,
                                     self.annotations.images, self.scale)
        self.text_blocks = result.text_blocks
        if result.uploaded:
            self.persist(result.url)
        return result

    def persist(self, pdf_url: Optional[str] = None) -> bool:
        if self.doc_api is None:
            return False
        state = self.to_state()
        if pdf_url is not None:
            state['pdfUrl'] = pdf_url
        try:
            self.doc_api.save_doc(self.doc_id, state)
        except requests.exceptions.RequestException as exc:
            logger.warning('Could not save state for %s: %s', self.doc_id, exc)
            return False
        return True

    def load_remote_state(self) -> None:
        """Pull the persisted annotation set from the server, if any."""
        if self.doc_api is None:
            return
        try:
            state = self.doc_api.load_doc(self.doc_id)
        except requests.exceptions.RequestException as exc:
            logger.warning('Could not load state for %s: %s', self.doc_id, exc)
            return
        self.annotations.load(state.get('boxes'), state.get('images'))

    def to_state(self) -> Dict[str, Any]:
        return {
            'boxes': self.annotations.boxes_dict(),
            'images': self.annotations.images_dict(),
            'pdfUrl': self.current_url,
        }

    def download(self) -> Tuple[bytes, str]:
        if self.current_bytes is None:
            raise DocumentDecodeError('no document is open')
        return self.current_bytes, DOWNLOAD_NAME

    # -- view -------------------------------------------------------------

    def set_scale(self, scale: float) -> float:
        self.scale = round(clamp_scale(scale), 2)
        return self.scale

    def zoom_in(self) -> float:
        return self.set_scale(self.scale + SCALE_STEP)

    def zoom_out(self) -> float:
        return self.set_scale(self.scale - SCALE_STEP)

    def set_tool(self, tool: Any) -> None:
        self.tool = Tool(tool)
        if self.tool is not Tool.IMAGE:
            self._pending_image = None

    def text_block_targets(self) -> List[Tuple[TextBlock, Rect]]:
        """Screen rectangles of the page-1 text blocks at the current zoom."""
        if self.current_bytes is None:
            return []
        height = page_height(self.current_bytes, 1)
        return [(block, to_screen_space(Rect(block.x, block.y, block.width, block.height),
                                        height, self.scale))
                for block in self.text_blocks]

    def click(self, page: int, left: float, top: float) -> Any:
        """A click on the empty page: place whatever the active tool places."""
        if self.tool is Tool.TEXT:
            return self.place_text_box(page, left, top)
        if self.tool is Tool.IMAGE and self._pending_image is not None:
            return self.place_image(page, left, top)
        return None

    # -- text boxes -------------------------------------------------------

    def place_text_box(self, page: int, left: float, top: float) -> Box:
        box = Box(
            id=self.new_id(),
            left=left,
            top=top,
            width=DEFAULT_BOX_WIDTH,
            height=self.font_size + 8,
            text=PLACEHOLDER_TEXT,
            font_size=self.font_size,
            color=self.color,
            is_bold=self.is_bold,
        )
        self.annotations.add_box(page, box)
        self.emit('add_box', {'docId': self.doc_id, 'pageNumber': page, 'box': box.to_dict()})
        return box

    def focus_box(self, box_id: str) -> None:
        self.emit('lock_box', {'docId': self.doc_id, 'boxId': box_id})

    def edit_box_text(self, page: int, box_id: str, text: str) -> bool:
        """Live typing: update and share the text without rebuilding."""
        patch = SetText(text)
        if not self.annotations.update_box(page, box_id, patch).found:
            return False
        self.emit('update_box', {'docId': self.doc_id, 'pageNumber': page,
                                 'boxId': box_id, 'patch': patch.to_dict()})
        return True

    def commit_box_text(self, page: int, box_id: str,
                        text: Optional[str] = None) -> Optional[RecomposeResult]:
        """The box lost focus."""
        self.emit('unlock_box', {'docId': self.doc_id, 'boxId': box_id})
        if text is not None:
            self.edit_box_text(page, box_id, text)
        box = self.annotations.get_box(page, box_id)
        if box is None or not box.is_drawable:
            return None
        return self.recompose()

    def delete_box(self, page: int, box_id: str) -> Optional[RecomposeResult]:
        if not self.annotations.delete_box(page, box_id).found:
            return None
        self.emit('delete_box', {'docId': self.doc_id, 'pageNumber': page, 'boxId': box_id})
        return self.recompose()

    def press_box(self, page: int, box_id: str) -> Optional[RecomposeResult]:
        """Mouse down on a box: delete with the delete tool, else start a drag."""
        if self.tool is Tool.DELETE:
            return self.delete_box(page, box_id)
        if self.tool is Tool.SELECT:
            box = self.annotations.get_box(page, box_id)
            if box is not None:
                self._gesture = _Gesture('box', page, box_id, box.left, box.top,
                                         box.width, box.height)
        return None

    # -- images -----------------------------------------------------------

    def select_image(self, data: bytes, content_type: str) -> None:
        """Pick an image to place with the next click."""
        if not (content_type or '').lower().startswith('image/'):
            self.set_tool(Tool.SELECT)
            raise PlacementError('Please select an image file (PNG, JPG, etc.)')
        self._pending_image = (bytes(data), content_type.lower())
        self.tool = Tool.IMAGE

    def place_image(self, page: int, left: float, top: float) -> ImageAnnotation:
        if self._pending_image is None:
            raise PlacementError('no image selected')
        data, content_type = self._pending_image
        self._pending_image = None
        self.tool = Tool.SELECT
        try:
            with Image.open(BytesIO(data)) as img:
                natural_width, natural_height = img.size
        except (UnidentifiedImageError, OSError) as exc:
            raise PlacementError(f'Failed to load image: {exc}') from exc

        width, height = fit_within(natural_width, natural_height)
        image = ImageAnnotation(
            id=self.new_id(),
            left=left,
            top=top,
            width=width,
            height=height,
            image_bytes=data,
            image_type=content_type,
            image_url=self.ephemeral.put(data),
        )
        self.annotations.add_image(page, image)
        self.emit('add_image', {'docId': self.doc_id, 'pageNumber': page, 'image': image.to_dict()})
        self.recompose()
        return image

    def place_image_from_url(self, page: int, left: float, top: float, url: str,
                             content_type: str = 'image/png',
                             timeout: float = IMAGE_LOAD_TIMEOUT) -> ImageAnnotation:
        try:
            data = fetch_bytes(url, timeout=timeout)
        except PlacementError:
            self.set_tool(Tool.SELECT)
            raise
        self.select_image(data, content_type)
        return self.place_image(page, left, top)

    def delete_image(self, page: int, image_id: str) -> Optional[RecomposeResult]:
        image = self.annotations.get_image(page, image_id)
        if not self.annotations.delete_image(page, image_id).found:
            return None
        if image is not None and image.image_url:
            self.ephemeral.release(image.image_url)
        self.emit('delete_image', {'docId': self.doc_id, 'pageNumber': page, 'imageId': image_id})
        return self.recompose()

    def press_image(self, page: int, image_id: str) -> Optional[RecomposeResult]:
        if self.tool is Tool.DELETE:
            return self.delete_image(page, image_id)
        if self.tool is Tool.SELECT:
            image = self.annotations.get_image(page, image_id)
            if image is not None:
                self._gesture = _Gesture('image', page, image_id, image.left, image.top,
                                         image.width, image.height)
        return None

    def press_resize_handle(self, page: int, image_id: str) -> None:
        image = self.annotations.get_image(page, image_id)
        if image is not None:
            self._gesture = _Gesture('resize', page, image_id, image.left, image.top,
                                     image.width, image.height)

    # -- drag and resize --------------------------------------------------

    def drag_to(self, dx: float, dy: float) -> bool:
        """Pointer moved by (dx, dy) since the press.  Returns True once moving."""
        g = self._gesture
        if g is None:
            return False
        if not g.moved and (abs(dx) > DRAG_THRESHOLD or abs(dy) > DRAG_THRESHOLD):
            g.moved = True
        if not g.moved:
            return False
        if g.kind == 'box':
            self.annotations.update_box(g.page, g.item_id, MoveTo(g.start_left + dx, g.start_top + dy))
            return True
        if g.kind == 'resize':
            width = max(MIN_IMAGE_WIDTH, g.start_width + dx)
            patch: Any = Resize(width, width * g.start_height / g.start_width)
        else:
            patch = MoveTo(g.start_left + dx, g.start_top + dy)
        # Images are shared live while they move; boxes only on release.
        if self.annotations.update_image(g.page, g.item_id, patch).found:
            self.emit('update_image', {'docId': self.doc_id, 'pageNumber': g.page,
                                       'imageId': g.item_id, 'patch': patch.to_dict()})
        return True

    def release(self) -> Optional[RecomposeResult]:
        """Pointer released: share the final geometry and rebuild if anything moved."""
        g, self._gesture = self._gesture, None
        if g is None or not g.moved:
            return None
        if g.kind == 'box':
            box = self.annotations.get_box(g.page, g.item_id)
            if box is None:
                return None
            patch: Any = MoveTo(box.left, box.top)
            self.emit('update_box', {'docId': self.doc_id, 'pageNumber': g.page,
                                     'boxId': g.item_id, 'patch': patch.to_dict()})
        else:
            image = self.annotations.get_image(g.page, g.item_id)
            if image is None:
                return None
            if g.kind == 'resize':
                patch = Resize(image.width, image.height)
            else:
                patch = MoveTo(image.left, image.top)
            self.emit('update_image', {'docId': self.doc_id, 'pageNumber': g.page,
                                       'imageId': g.item_id, 'patch': patch.to_dict()})
        return self.recompose()

    # -- existing text ----------------------------------------------------

    def edit_text_block(self, block: TextBlock, new_text: str) -> Optional[RecomposeResult]:
        """Replace a glyph run of the source document in place."""
        current = self.current_bytes
        if current is None or self.base is None:
            return None
        if new_text == block.text:
            return None
        # Both documents are rebuilt before anything is published or recorded.
        base = replace_text_block(self.base, block, new_text)
        result = self.recomposer.edit_text_block(current, block, new_text)
        self.base = base
        self.text_blocks = result.text_blocks
        if result.uploaded:
            self.persist(result.url)
        return result

    # -- history ----------------------------------------------------------

    def undo(self) -> bool:
        return self._show(self.history.undo())

    def redo(self) -> bool:
        return self._show(self.history.redo())

    def _show(self, entry: Any) -> bool:
        if entry is None:
            return False
        self.text_blocks = extract_text_blocks(entry.data, 1)
        return True

    # -- remote events ----------------------------------------------------

    def apply_remote(self, event: str, payload: Any) -> bool:
        """Mirror a relayed event into the local store.  Malformed ones are ignored."""
        if not isinstance(payload, dict):
            return False
        page = payload.get('pageNumber')
        store = self.annotations
        try:
            if event == 'init_state':
                store.load(payload.get('boxes'), payload.get('images'))
            elif event == 'box_added':
                store.apply_remote_add_box(page, payload['box'])
            elif event == 'box_updated':
                return store.apply_remote_update_box(page, payload['boxId'], payload['patch']).found
            elif event == 'box_deleted':
                return store.apply_remote_delete_box(page, payload['boxId']).found
            elif event == 'image_added':
                store.apply_remote_add_image(page, payload['image'])
            elif event == 'image_updated':
                return store.apply_remote_update_image(page, payload['imageId'], payload['patch']).found
            elif event == 'image_deleted':
                return store.apply_remote_delete_image(page, payload['imageId']).found
            elif event == 'box_locked':
                return store.set_locked(payload['boxId'], True)
            elif event == 'box_unlocked':
                return store.set_locked(payload['boxId'], False)
            else:
                return False
        except (PatchError, ValueError, TypeError, KeyError) as exc:
            logger.debug('Ignoring malformed %s: %s', event, exc)
            return False
        return True


class SocketSyncClient:
    """Connects a :class:`DocumentSession` to the server's sync channel."""

    def __init__(self, session: DocumentSession, url: str,
                 client: Optional[socketio.Client] = None) -> None:
        self.session = session
        self.url = url
        self.client = client or socketio.Client(reconnection=False)
        session.emit = self.emit
        for event in REMOTE_EVENTS:
            self.client.on(event, self._handler(event))

    def _handler(self, event: str):
        def handler(payload=None):
            self.session.apply_remote(event, payload)
        return handler

    def connect(self) -> None:
        self.client.connect(self.url, transports=['websocket'])
        self.client.emit('join', {'docId': self.session.doc_id})

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.client.connected:
            self.client.emit(event, payload)

    def disconnect(self) -> None:
        self.client.disconnect()
