"""Registry of live real-time connections per authenticated user."""

import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps a user id to the set of connection ids currently open for it.

    ``emit`` is any callable ``emit(event, payload, to=connection_id)``; the
    app binds it to Flask-SocketIO.  Pushes run on a snapshot taken under the
    lock, so connects and disconnects never block or break a delivery loop.
    """

    def __init__(self, emit=None):
        self._lock = threading.Lock()
        self._by_user = defaultdict(set)
        self._by_sid = {}
        self.emit = emit

    def bind(self, emit):
        self.emit = emit

    def connect(self, user_id, sid):
        with self._lock:
            previous = self._by_sid.get(sid)
            if previous is not None and previous != user_id:
                self._discard(previous, sid)
            self._by_sid[sid] = user_id
            self._by_user[user_id].add(sid)
        logger.debug(f"User {user_id} connected on {sid}")

    def disconnect(self, sid):
        with self._lock:
            user_id = self._by_sid.pop(sid, None)
            if user_id is not None:
                self._discard(user_id, sid)
        if user_id is not None:
            logger.debug(f"User {user_id} disconnected from {sid}")
        return user_id

    def _discard(self, user_id, sid):
        sids = self._by_user.get(user_id)
        if sids is None:
            return
        sids.discard(sid)
        if not sids:
            del self._by_user[user_id]

    def sessions_for(self, user_id):
        with self._lock:
            return sorted(self._by_user.get(user_id, ()))

    def is_online(self, user_id):
        with self._lock:
            return bool(self._by_user.get(user_id))

    def _deliver(self, sids, event, payload):
        if self.emit is None:
            return 0
        delivered = 0
        for sid in sids:
            try:
                self.emit(event, payload, to=sid)
                delivered += 1
            except Exception as e:
                # The connection may have dropped mid-push; that delivery is lost.
                logger.warning(f"Failed to push {event} to {sid}: {str(e)}")
        return delivered

    def push(self, user_id, event, payload):
        """Send an event to every live connection of one user."""
        return self._deliver(self.sessions_for(user_id), event, payload)

    def broadcast(self, event, payload, exclude_user=None):
        with self._lock:
            sids = [sid for sid, uid in self._by_sid.items() if uid != exclude_user]
        return self._deliver(sids, event, payload)
