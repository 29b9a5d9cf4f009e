"""
Per-document broadcast rooms for live annotation edits.

:class:`SyncChannel` holds the protocol: enrolment on ``join``, replay of
the cached state as ``init_state``, and relay of every annotation
mutation to the other participants of the room.  It talks to the network
only through a small transport object, so it can be driven directly in
tests.  :class:`SocketIOTransport` and :func:`register_socket_handlers`
bind it to Flask-SocketIO.

The relay is best effort and unauthenticated.  A message missing a
required field, or carrying a patch that matches no patch variant, is
dropped without a reply.  Delivery is at most once, in the sender's order,
to peers connected at that moment.
"""

import logging
import threading
from typing import Any, Dict, Optional, Set

from flask import request
from flask_socketio import join_room, leave_room

from .errors import PatchError
from .rooms import RoomStore

logger = logging.getLogger(__name__)

# Client event -> event name rebroadcast to the other participants.
RELAYED_EVENTS = {
    'add_box': 'box_added',
    'update_box': 'box_updated',
    'delete_box': 'box_deleted',
    'add_image': 'image_added',
    'update_image': 'image_updated',
    'delete_image': 'image_deleted',
    'lock_box': 'box_locked',
    'unlock_box': 'box_unlocked',
}

REQUIRED_FIELDS = {
    'add_box': ('docId', 'pageNumber', 'box'),
    'update_box': ('docId', 'pageNumber', 'boxId', 'patch'),
    'delete_box': ('docId', 'pageNumber', 'boxId'),
    'add_image': ('docId', 'pageNumber', 'image'),
    'update_image': ('docId', 'pageNumber', 'imageId', 'patch'),
    'delete_image': ('docId', 'pageNumber', 'imageId'),
    'lock_box': ('docId', 'boxId'),
    'unlock_box': ('docId', 'boxId'),
}


def _apply(event: str, payload: Dict[str, Any]):
    """Return a RoomStore mutation for ``event``; lock events have none."""
    page = payload.get('pageNumber')
    if event == 'add_box':
        return lambda s: s.apply_remote_add_box(page, payload['box'])
    if event == 'update_box':
        return lambda s: s.apply_remote_update_box(page, payload['boxId'], payload['patch'])
    if event == 'delete_box':
        return lambda s: s.apply_remote_delete_box(page, payload['boxId'])
    if event == 'add_image':
        return lambda s: s.apply_remote_add_image(page, payload['image'])
    if event == 'update_image':
        return lambda s: s.apply_remote_update_image(page, payload['imageId'], payload['patch'])
    if event == 'delete_image':
        return lambda s: s.apply_remote_delete_image(page, payload['imageId'])
    return None


def is_well_formed(event: str, payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    for name in REQUIRED_FIELDS.get(event, ('docId',)):
        if not payload.get(name):
            return False
    page = payload.get('pageNumber')
    if page is not None:
        try:
            if int(page) < 1:
                return False
        except (TypeError, ValueError):
            return False
    return True


class SyncChannel:
    """Room membership, state replay and relay of annotation events.

    Socket.IO handlers run on their own threads, so membership is only
    touched under ``_lock``.
    """

    def __init__(self, rooms: RoomStore, transport: Any) -> None:
        self.rooms = rooms
        self.transport = transport
        self.participants: Dict[str, str] = {}
        self._lock = threading.RLock()

    def active_rooms(self) -> Set[str]:
        with self._lock:
            return set(self.participants.values())

    def room_size(self, doc_id: str) -> int:
        with self._lock:
            return sum(1 for d in self.participants.values() if d == doc_id)

    def join(self, sid: str, payload: Any) -> Optional[Dict[str, Any]]:
        if not is_well_formed('join', payload):
            logger.debug('Dropping join without docId from %s', sid)
            return None
        doc_id = str(payload['docId'])
        with self._lock:
            previous = self.participants.get(sid)
            self.participants[sid] = doc_id
            active = set(self.participants.values())
        if previous and previous != doc_id:
            self.transport.leave_room(sid, previous)
        self.transport.enter_room(sid, doc_id)
        self.rooms.evict_idle(keep=active)

        snapshot = self.rooms.get(doc_id).snapshot()
        init_state = {'boxes': snapshot['boxes'], 'images': snapshot['images']}
        self.transport.send(sid, 'init_state', init_state)
        logger.info('%s joined %s (%d participant(s))', sid, doc_id, self.room_size(doc_id))
        return init_state

    def handle(self, event: str, sid: str, payload: Any) -> bool:
        """Apply and relay one client event.  Returns False when dropped."""
        if event not in RELAYED_EVENTS or not is_well_formed(event, payload):
            logger.debug('Dropping malformed %s from %s', event, sid)
            return False
        doc_id = str(payload['docId'])
        mutation = _apply(event, payload)
        if mutation is not None:
            try:
                result = self.rooms.mutate(doc_id, mutation)
            except (PatchError, ValueError, TypeError, KeyError) as exc:
                logger.debug('Dropping invalid %s from %s: %s', event, sid, exc)
                return False
            if event.startswith('update_') and not result.found:
                return False
        self.transport.broadcast(doc_id, RELAYED_EVENTS[event], payload, sid)
        return True

    def leave(self, sid: str) -> None:
        with self._lock:
            doc_id = self.participants.pop(sid, None)
        if doc_id is not None:
            self.transport.leave_room(sid, doc_id)
            logger.info('%s left %s', sid, doc_id)


class SocketIOTransport:
    """Transport over a Flask-SocketIO server (default namespace)."""

    def __init__(self, socketio: Any, namespace: str = '/') -> None:
        self.socketio = socketio
        self.namespace = namespace

    def enter_room(self, sid: str, room: str) -> None:
        join_room(room, sid=sid, namespace=self.namespace)

    def leave_room(self, sid: str, room: str) -> None:
        leave_room(room, sid=sid, namespace=self.namespace)

    def send(self, sid: str, event: str, data: Any) -> None:
        self.socketio.emit(event, data, to=sid, namespace=self.namespace)

    def broadcast(self, room: str, event: str, data: Any, skip_sid: Optional[str]) -> None:
        self.socketio.emit(event, data, to=room, skip_sid=skip_sid, namespace=self.namespace)


def register_socket_handlers(socketio: Any, channel: SyncChannel) -> None:
    """Route socket events into ``channel``."""

    @socketio.on('join')
    def on_join(payload=None):
        channel.join(request.sid, payload)

    def relay(event: str):
        def handler(payload=None):
            channel.handle(event, request.sid, payload)
        handler.__name__ = f"on_{event}"
        return handler

    for event in RELAYED_EVENTS:
        socketio.on_event(event, relay(event))

    @socketio.on('disconnect')
    def on_disconnect(*args):
        channel.leave(request.sid)
