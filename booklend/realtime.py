import logging

from flask import request
from flask_socketio import SocketIO

from .auth import current_principal

logger = logging.getLogger(__name__)


def create_socketio(app, registry):
    """Attach Flask-SocketIO to ``app`` and route its connections into ``registry``."""
    socketio = SocketIO(
        app,
        cors_allowed_origins=app.config['CORS_ORIGINS'],
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )

    @socketio.on('connect')
    def handle_connect(auth=None):
        user = current_principal()
        if user is None:
            logger.debug(f"Rejected socket connection without a user session: {request.sid}")
            return False
        registry.connect(user.id, request.sid)

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        registry.disconnect(request.sid)

    def emit(event, payload, to=None):
        socketio.emit(event, payload, to=to)

    registry.bind(emit)
    logger.debug("Socket.IO channel ready")
    return socketio
