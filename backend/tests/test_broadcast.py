import json

from crashgame.services.rounds import BroadcastHub, SocketHandle

from conftest import RecordingHandle


class BrokenHandle:
    def __init__(self):
        self.calls = 0

    def send(self, text):
        self.calls += 1
        raise ConnectionError('socket closed')


class RawHandle:
    def __init__(self):
        self.frames = []

    def send(self, text):
        self.frames.append(text)


def test_broadcast_reaches_every_handle():
    hub = BroadcastHub()
    a, b = RecordingHandle(), RecordingHandle()
    hub.register(a)
    hub.register(b)

    delivered = hub.broadcast({'type': 'waiting_phase', 'waitTime': 15000})
    assert delivered == 2
    assert a.messages == b.messages == [{'type': 'waiting_phase', 'waitTime': 15000}]


def test_failing_handle_is_dropped_and_others_still_receive():
    hub = BroadcastHub()
    good, broken = RecordingHandle(), BrokenHandle()
    hub.register(good)
    hub.register(broken)

    assert hub.broadcast({'type': 'multiplier_update', 'multiplier': 1.5}) == 1
    assert broken not in hub
    assert len(hub) == 1

    hub.broadcast({'type': 'multiplier_update', 'multiplier': 1.6})
    assert broken.calls == 1
    assert [m['multiplier'] for m in good.messages] == [1.5, 1.6]


def test_message_is_serialized_once():
    hub = BroadcastHub()
    first, second = RawHandle(), RawHandle()
    hub.register(first)
    hub.register(second)
    hub.broadcast({'type': 'game_ended', 'crashAt': 2.5, 'survivingPlayers': []})
    assert first.frames[0] is second.frames[0]
    assert json.loads(first.frames[0])['crashAt'] == 2.5


def test_unregister_stops_delivery():
    hub = BroadcastHub()
    handle = RecordingHandle()
    hub.register(handle)
    hub.unregister(handle)
    hub.unregister(handle)
    assert hub.broadcast({'type': 'bet_queued'}) == 0
    assert handle.messages == []


def test_socket_handles_compare_by_session():
    class FakeSocketIO:
        def __init__(self):
            self.sent = []

        def send(self, data, to=None, namespace=None):
            self.sent.append((data, to, namespace))

    sio = FakeSocketIO()
    hub = BroadcastHub()
    hub.register(SocketHandle(sio, 'sid-1'))
    hub.register(SocketHandle(sio, 'sid-1'))
    hub.register(SocketHandle(sio, 'sid-2'))
    assert len(hub) == 2

    hub.broadcast({'type': 'bet_queued', 'queueSize': 1})
    assert sorted(to for _, to, _ in sio.sent) == ['sid-1', 'sid-2']
    assert all(ns == '/ws' for _, _, ns in sio.sent)

    hub.unregister(SocketHandle(sio, 'sid-2'))
    assert len(hub) == 1
