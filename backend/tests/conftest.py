import heapq
import itertools
import json
import os
import sys
import pytest

# Ensure the backend root (containing the `crashgame` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from crashgame import create_app, db, socketio, get_engine
from crashgame.services.rounds import BroadcastHub, RoundEngine, TimerHandle


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = False
    ENGINE_AUTOSTART = True
    PAYOUT_GATEWAY_URL = None
    PAYOUT_MAX_ATTEMPTS = 2
    PAYOUT_RETRY_BACKOFF_SEC = 0


class ManualScheduler:
    """Virtual-clock scheduler: timers only fire when a test advances time."""

    def __init__(self):
        self.now_ms = 0
        self.running = False
        self._timers = []
        self._seq = itertools.count()

    def start(self):
        self.running = True

    def stop(self):
        self.running = False
        for _, _, handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def run(self, fn, *args, **kwargs):
        return fn(*args, **kwargs)

    def call_later(self, delay, callback, *args):
        handle = TimerHandle(callback, args)
        due = self.now_ms + int(round(delay * 1000))
        heapq.heappush(self._timers, (due, next(self._seq), handle))
        return handle

    def advance(self, ms):
        target = self.now_ms + ms
        while self._timers and self._timers[0][0] <= target:
            due, _, handle = heapq.heappop(self._timers)
            self.now_ms = due
            handle.fire()
        self.now_ms = target

    def pending(self):
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)

    def clock(self):
        return self.now_ms / 1000.0


class RecordingHandle:
    """Client handle that keeps every message it was sent."""

    def __init__(self):
        self.messages = []

    def send(self, text):
        self.messages.append(json.loads(text))

    def of_type(self, kind):
        return [m for m in self.messages if m['type'] == kind]

    def types(self):
        return [m['type'] for m in self.messages]

    def multipliers(self):
        return [m['multiplier'] for m in self.of_type('multiplier_update')]


class FakeSettlement:
    def __init__(self):
        self.submitted = []
        self.stopped = False

    def submit(self, request):
        self.submitted.append(request)

    def stop(self):
        self.stopped = True


class FakeRecorder:
    def __init__(self):
        self.calls = []

    def submit(self, crash_at, **details):
        self.calls.append(dict(details, crash_at=crash_at))


class CrashPoints:
    """Feeds crash points to the engine in order, then repeats the last one."""

    def __init__(self, *values):
        self.values = list(values) or [2.5]

    def __call__(self):
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


# ---- engine fixtures ----

@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def hub():
    return BroadcastHub()


@pytest.fixture()
def listener(hub):
    handle = RecordingHandle()
    hub.register(handle)
    return handle


@pytest.fixture()
def settlement():
    return FakeSettlement()


@pytest.fixture()
def recorder():
    return FakeRecorder()


@pytest.fixture()
def crash_points():
    return CrashPoints(2.5)


@pytest.fixture()
def engine(hub, scheduler, settlement, recorder, crash_points, listener):
    eng = RoundEngine(
        hub,
        scheduler,
        settlement=settlement,
        recorder=recorder,
        config={},
        crash_point=crash_points,
        clock=scheduler.clock,
    )
    eng.start()
    yield eng
    eng.shutdown()


# ---- app fixtures ----

@pytest.fixture()
def app_scheduler():
    return ManualScheduler()


@pytest.fixture()
def flask_app(app_scheduler):
    application = create_app(TestConfig, scheduler=app_scheduler)
    with application.app_context():
        db.create_all()
        yield application
        get_engine(application).shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(flask_app, namespace='/ws')
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


def ws_messages(test_client, namespace='/ws'):
    """Decode the JSON frames a Socket.IO test client received."""
    decoded = []
    for pkt in test_client.get_received(namespace):
        if pkt['name'] != 'message':
            continue
        payload = pkt['args']
        if isinstance(payload, list):
            payload = payload[0]
        decoded.append(json.loads(payload) if isinstance(payload, str) else payload)
    return decoded
