import base64
import os
import sys

import pytest

# Ensure the backend root (containing the `facememory` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from facememory.config import Config
from facememory.context import EXTENSION_KEY
from facememory.game.engine import GameServer
from facememory.game.transport import LocalTransport
from facememory.server import create_app


PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\nfake-face").decode()


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SOCKETIO_ASYNC_MODE = 'threading'
    TRUST_PROXY_HEADERS = False
    # Tests drive the clock themselves through GameServer.pump
    ROOM_TIMERS_ENABLED = False
    IMAGE_STORE = 'memory'


GAME_CONFIG = {
    'DEFAULT_VIEW_TIME_MS': 5000,
    'DEFAULT_GUESS_TIME_MS': 20000,
    'DEFAULT_TOTAL_ROUNDS': 10,
    'DEFAULT_MIN_PLAYERS': 2,
    'DEFAULT_SCORING_MODE': 'distance',
    'FAR_BAND_POINTS': 10,
    'RESULTS_DURATION_MS': 5000,
    'ROOM_CLEANUP_SEC': 600,
    'ABANDONED_ROOM_TTL_SEC': 600,
}


class FakeClock:
    def __init__(self, start=1_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def transport():
    return LocalTransport()


@pytest.fixture()
def game(clock, transport):
    return GameServer(config=GAME_CONFIG, transport=transport, clock=clock)


@pytest.fixture()
def app_and_socketio():
    return create_app(TestConfig)


@pytest.fixture()
def flask_app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture()
def socketio(app_and_socketio):
    return app_and_socketio[1]


@pytest.fixture()
def game_server(flask_app, clock):
    server = flask_app.extensions[EXTENSION_KEY]
    server.clock = clock
    return server


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app, socketio):
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected():
                test_client.disconnect()
        except Exception:
            pass


class TimersConfig(TestConfig):
    ROOM_TIMERS_ENABLED = True


@pytest.fixture()
def timed_app(monkeypatch):
    """App with room timers on; background tasks are recorded, not run."""
    app, socketio = create_app(TimersConfig)
    started = []
    monkeypatch.setattr(socketio, 'start_background_task', lambda fn, *args, **kwargs: started.append(fn))
    return app, socketio, started
