import json
import logging
import threading


logger = logging.getLogger(__name__)


class SocketHandle:
    """A connected Socket.IO client, addressed by its session id."""

    def __init__(self, socketio, sid: str, namespace: str = '/ws'):
        self.socketio = socketio
        self.sid = sid
        self.namespace = namespace

    def send(self, text: str) -> None:
        self.socketio.send(text, to=self.sid, namespace=self.namespace)

    def __eq__(self, other):
        return isinstance(other, SocketHandle) and other.sid == self.sid and other.namespace == self.namespace

    def __hash__(self):
        return hash((self.sid, self.namespace))

    def __repr__(self):
        return f"SocketHandle(sid={self.sid!r})"


class BroadcastHub:
    """Best-effort fan-out of state changes to every connected client.

    A handle is anything with a ``send(text)`` method. Delivery is
    attempted once per handle; a handle that raises is dropped and the
    remaining handles still receive the message. There is no retry and no
    backlog, so a reconnecting client relies on the ``game_state``
    snapshot it gets on connect.
    """

    def __init__(self):
        self._handles = set()
        self._lock = threading.Lock()

    def register(self, handle) -> None:
        with self._lock:
            self._handles.add(handle)

    def unregister(self, handle) -> None:
        with self._lock:
            self._handles.discard(handle)

    def __len__(self):
        with self._lock:
            return len(self._handles)

    def __contains__(self, handle):
        with self._lock:
            return handle in self._handles

    def broadcast(self, message: dict) -> int:
        """Send to all handles; returns how many deliveries succeeded."""
        text = json.dumps(message)
        with self._lock:
            recipients = list(self._handles)
        delivered = 0
        for handle in recipients:
            try:
                handle.send(text)
                delivered += 1
            except Exception as exc:
                logger.warning(f"[broadcast-drop] handle={handle!r} type={message.get('type')} error={exc}")
                self.unregister(handle)
        return delivered
