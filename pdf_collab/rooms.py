"""
Server-side cache of the latest annotation set per document.

The cache exists so that a participant joining a room can be handed the
current boxes and images.  It is reached only through :class:`RoomStore`
(``get``/``put``/``merge``/``mutate``), created lazily on first reference
and evicted after ``idle_seconds`` without use.  :class:`JsonRoomStore`
additionally writes one JSON record per document so evicted rooms can be
reloaded.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union
from urllib.parse import quote

from .store import AnnotationStore

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RoomState:
    doc_id: str
    annotations: AnnotationStore = field(default_factory=AnnotationStore)
    pdf_url: Optional[str] = None
    last_access: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            'boxes': self.annotations.boxes_dict(),
            'images': self.annotations.images_dict(),
            'pdfUrl': self.pdf_url,
        }


class RoomStore:
    """In-memory room cache with idle eviction."""

    def __init__(self, idle_seconds: Optional[float] = 3600,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._rooms: Dict[str, RoomState] = {}
        self._lock = threading.RLock()

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    # Persistence hooks; the in-memory store keeps nothing beyond the process.
    def _load(self, doc_id: str) -> Optional[RoomState]:
        return None

    def _persist(self, state: RoomState) -> None:
        return None

    def get(self, doc_id: str) -> RoomState:
        """Return the room for ``doc_id``, creating it if absent."""
        with self._lock:
            state = self._rooms.get(doc_id)
            if state is None:
                state = self._load(doc_id) or RoomState(doc_id)
                self._rooms[doc_id] = state
                logger.info('Room %s created', doc_id)
            state.last_access = self.clock()
            return state

    def put(self, doc_id: str, payload: Dict[str, Any]) -> RoomState:
        """Overwrite the room; fields missing from ``payload`` become empty."""
        with self._lock:
            state = RoomState(doc_id, AnnotationStore.from_state(payload.get('boxes'), payload.get('images')),
                              payload.get('pdfUrl'), self.clock())
            self._rooms[doc_id] = state
            self._persist(state)
            return state

    def merge(self, doc_id: str, payload: Dict[str, Any]) -> RoomState:
        """Overwrite the fields present in ``payload`` and keep the rest."""
        with self._lock:
            previous = self.get(doc_id).snapshot()
            merged = {
                'boxes': payload.get('boxes') if payload.get('boxes') is not None else previous['boxes'],
                'images': payload.get('images') if payload.get('images') is not None else previous['images'],
                'pdfUrl': payload.get('pdfUrl') if payload.get('pdfUrl') is not None else previous['pdfUrl'],
            }
            return self.put(doc_id, merged)

    def mutate(self, doc_id: str, fn: Callable[[AnnotationStore], T]) -> T:
        """Apply ``fn`` to the room's annotations atomically and persist."""
        with self._lock:
            state = self.get(doc_id)
            result = fn(state.annotations)
            self._persist(state)
            return result

    def evict_idle(self, keep: Iterable[str] = ()) -> List[str]:
        """Drop rooms unused for ``idle_seconds``, except those in ``keep``."""
        if self.idle_seconds is None:
            return []
        keep = set(keep)
        now = self.clock()
        with self._lock:
            stale = [doc_id for doc_id, state in self._rooms.items()
                     if doc_id not in keep and now - state.last_access > self.idle_seconds]
            for doc_id in stale:
                del self._rooms[doc_id]
        if stale:
            logger.info('Evicted %d idle room(s): %s', len(stale), ', '.join(stale))
        return stale


class JsonRoomStore(RoomStore):
    """Room cache that mirrors every room to ``<folder>/<doc id>.json``."""

    def __init__(self, folder: Union[str, Path], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.folder = Path(folder)
        self.folder.mkdir(parents=True, exist_ok=True)

    def path_for(self, doc_id: str) -> Path:
        return self.folder / f"{quote(doc_id, safe='')}.json"

    def _load(self, doc_id: str) -> Optional[RoomState]:
        path = self.path_for(doc_id)
        if not path.exists():
            return None
        try:
            record = json.loads(path.read_text(encoding='utf-8'))
            annotations = AnnotationStore.from_state(record.get('boxes'), record.get('images'))
        except (OSError, ValueError) as exc:
            logger.error('Could not read room record %s: %s', path, exc)
            return None
        return RoomState(doc_id, annotations, record.get('pdfUrl'))

    def _persist(self, state: RoomState) -> None:
        path = self.path_for(state.doc_id)
        tmp = path.with_suffix('.json.tmp')
        try:
            tmp.write_text(json.dumps(state.snapshot(), indent=2), encoding='utf-8')
            tmp.replace(path)
        except OSError as exc:
            # The in-memory copy stays authoritative for this process.
            logger.error('Could not persist room %s: %s', state.doc_id, exc)
