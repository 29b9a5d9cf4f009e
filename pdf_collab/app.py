"""
Flask server for the collaborative PDF editor.

HTTP endpoints:

- ``GET /health`` - liveness check.
- ``GET /doc/<id>`` / ``POST /doc/<id>`` - read or save the annotation state
  of a document (``{boxes, images, pdfUrl}``).  A save keeps any field the
  body leaves out.
- ``POST /api/files/upload`` - accepts a PDF or an image (multipart field
  ``file``), stores it under a unique name and returns ``{url, name, size}``.
- ``GET /uploads/<name>`` - serves stored files back.
- ``POST /export`` - rebuilds an uploaded PDF with a set of boxes and images
  and streams back the result.

The same server hosts the sync channel over Socket.IO (``join``,
``add_box``, ``update_box`` ...).  Both the REST state endpoint and the
channel read and write one shared room store.
"""

from io import BytesIO
from pathlib import Path
from typing import Any, Optional

from flask import Flask, request, send_file, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import NotFound, RequestEntityTooLarge
from werkzeug.utils import secure_filename

from .config import Config
from .errors import DocumentDecodeError, UploadRejected
from .geometry import clamp_scale
from .logging_utils import configure_logging
from .recompose import recompose
from .rooms import JsonRoomStore, RoomStore
from .storage import BlobStore, validate_upload
from .store import AnnotationStore
from .sync import SocketIOTransport, SyncChannel, register_socket_handlers


def create_app(config: Optional[Config] = None) -> Flask:
    """Build the Flask app and its Socket.IO server."""
    config = config or Config()
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = config.max_content_length
    app.config['PDF_COLLAB'] = config

    CORS(app, origins=config.cors_origins)
    socketio = SocketIO(app, cors_allowed_origins=config.cors_origins, async_mode='threading')

    blobs = BlobStore(config.upload_dir)
    if config.doc_state_dir:
        rooms: RoomStore = JsonRoomStore(config.doc_state_dir, idle_seconds=config.room_idle_seconds)
    else:
        rooms = RoomStore(idle_seconds=config.room_idle_seconds)
    channel = SyncChannel(rooms, SocketIOTransport(socketio))
    register_socket_handlers(socketio, channel)

    app.extensions['pdf_collab'] = {'blobs': blobs, 'rooms': rooms, 'channel': channel}

    @app.errorhandler(UploadRejected)
    def upload_rejected(exc: UploadRejected) -> Any:
        return jsonify({'error': str(exc)}), exc.status

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(exc: RequestEntityTooLarge) -> Any:
        return jsonify({'error': f'File exceeds {config.max_upload_mb} MB limit'}), 413

    @app.errorhandler(NotFound)
    def not_found(exc: NotFound) -> Any:
        return jsonify({'error': 'Not found'}), 404

    @app.route('/health')
    def health() -> Any:
        return jsonify({'ok': True})

    @app.route('/doc/<doc_id>', methods=['GET'])
    def get_doc(doc_id: str) -> Any:
        """Current cached state; empty defaults for an unknown document."""
        return jsonify(rooms.get(doc_id).snapshot())

    @app.route('/doc/<doc_id>', methods=['POST'])
    def save_doc(doc_id: str) -> Any:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({'error': 'Expected a JSON object'}), 400
        try:
            rooms.merge(doc_id, payload)
        except (ValueError, TypeError, KeyError) as e:
            return jsonify({'error': f'Invalid document state: {e}'}), 400
        app.logger.info('Saved state for %s', doc_id)
        return jsonify({'ok': True})

    @app.route('/api/files/upload', methods=['POST'])
    def upload() -> Any:
        """Store an uploaded PDF or image and return where it can be fetched."""
        uploaded = request.files.get('file')
        # Type checks run before anything is written.
        ext = validate_upload(uploaded.filename if uploaded else None,
                              uploaded.mimetype if uploaded else None)
        url = blobs.save_stream(uploaded.stream, ext)
        size = blobs.path_for(url).stat().st_size
        app.logger.info('Stored upload %s (%d bytes)', url, size)
        return jsonify({'url': url, 'name': uploaded.filename, 'size': size})

    @app.route('/export', methods=['POST'])
    def export_pdf() -> Any:
        """Apply boxes and images to an uploaded PDF and send back the new file."""
        data = request.get_json(force=True, silent=True) or {}
        filename = data.get('filename')
        pdf_path = blobs.path_for(filename) if filename else None
        if not pdf_path or not pdf_path.exists():
            return jsonify({'error': 'Original PDF not found'}), 400
        try:
            annotations = AnnotationStore.from_state(data.get('boxes'), data.get('images'))
            scale = clamp_scale(data.get('scale') or 1.0)
        except (ValueError, TypeError, KeyError) as e:
            return jsonify({'error': f'Invalid annotations: {e}'}), 400
        try:
            result = recompose(pdf_path.read_bytes(), annotations.boxes, annotations.images, scale)
        except DocumentDecodeError as e:
            return jsonify({'error': str(e)}), 500
        for message in result.errors:
            app.logger.warning('Export of %s skipped %s', filename, message)

        stem = Path(secure_filename(data.get('original_name') or filename)).stem or 'document'
        return send_file(
            BytesIO(result.data),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=f'{stem}-edited.pdf'
        )

    @app.route('/uploads/<path:filename>')
    def serve_uploaded(filename: str) -> Any:
        """Serve stored files so the viewer can render them."""
        return send_from_directory(blobs.folder, filename)

    return app


def main() -> None:
    """Entry point for running the server."""
    config = Config()
    configure_logging(config.log_level, config.log_file)
    app = create_app(config)
    socketio = app.extensions['socketio']
    socketio.run(app, host=config.host, port=config.port, debug=config.debug,
                 allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
