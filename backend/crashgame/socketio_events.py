import json
import logging

from flask import request
from flask_socketio import send

from crashgame import socketio, get_engine
from crashgame.exceptions import CrashGameError, ProtocolError
from crashgame.services.rounds import SocketHandle


logger = logging.getLogger(__name__)

NAMESPACE = '/ws'


def parse_client_message(raw) -> dict:
    """Decode an inbound frame into a dict with a string ``type``."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8', errors='replace')
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ProtocolError('Invalid message format')
    if not isinstance(raw, dict):
        raise ProtocolError('Invalid message format')
    if not isinstance(raw.get('type'), str):
        raise ProtocolError('Message type is required')
    return raw


def _reply(message: dict) -> None:
    send(json.dumps(message))


def _current_handle() -> SocketHandle:
    # type: ignore: request.sid exists in Socket.IO context
    return SocketHandle(socketio, request.sid, request.namespace)  # type: ignore


def handle_connect(auth=None):
    # the engine sends game_state itself, ahead of any broadcast
    snapshot = get_engine().connect(_current_handle())
    logger.info(f"[ws-open] sid={request.sid} phase={snapshot['phase']}")  # type: ignore


def handle_disconnect(*args):
    get_engine().disconnect(_current_handle())
    logger.info(f"[ws-close] sid={request.sid}")  # type: ignore


def _join_game(message):
    address = message.get('address')
    amount = message.get('amount')
    if not isinstance(address, str) or amount is None:
        raise ProtocolError('join_game requires address and amount')
    result = get_engine().join(address, amount, message.get('transactionId'))
    _reply(result.to_message())


def _withdraw(message):
    address = message.get('address')
    if not isinstance(address, str) or not address:
        raise ProtocolError('withdraw requires address')
    result = get_engine().withdraw(address)
    _reply(result.to_message())


def _get_multiplier(message):
    _reply({'type': 'current_multiplier', 'multiplier': get_engine().current_multiplier()})


_HANDLERS = {
    'join_game': _join_game,
    'withdraw': _withdraw,
    'get_multiplier': _get_multiplier,
}


def handle_message(data):
    try:
        message = parse_client_message(data)
        handler = _HANDLERS.get(message['type'])
        if handler is None:
            raise ProtocolError('Unknown message type')
        handler(message)
    except ProtocolError as exc:
        _reply({'type': 'error', 'message': str(exc)})
    except CrashGameError as exc:
        logger.error(f"[ws-error] sid={request.sid} error={exc}")  # type: ignore
        _reply({'type': 'error', 'message': 'Server unavailable, try again'})


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register the player protocol on the given Socket.IO namespace.

    Clients exchange JSON frames on the plain ``message`` event; every frame
    carries a ``type`` field.
    """
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
