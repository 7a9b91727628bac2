import os
import sys
import pytest

# Ensure the backend root (containing the `manhunt` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from manhunt import create_app, db, get_registry, socketio
from manhunt.services.game import triggers

# Square play area, roughly 1.1 km on a side
BOUNDARY = [
    {'lat': 40.00, 'lng': -75.01},
    {'lat': 40.00, 'lng': -75.00},
    {'lat': 40.01, 'lng': -75.00},
    {'lat': 40.01, 'lng': -75.01},
]
INSIDE = {'lat': 40.005, 'lng': -75.005}
OUTSIDE = {'lat': 40.02, 'lng': -75.005}

START_TIME = 1_700_000_000.0


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TICK_INTERVAL_SEC = 1.0
    GAME_DURATION_MS = 3600000
    SHRINK_INTERVAL_MS = 600000
    MISSION_INTERVAL_MS = 300000
    SEEKER_COUNT = 1
    COMMUNICATION_MODE = 'final_phase_only'
    SHRINK_WARNING_SEC = 30
    SHRINK_FACTOR = 0.8
    FINAL_PHASE_SEC = 600
    ECONOMY_FINAL_PHASE_RATIO = 0.3
    MISSION_INITIAL_DELAY_SEC = 30
    MISSION_DEADLINE_SEC = 180
    MISSION_FAIL_PENALTY = 20
    REVEAL_DURATION_SEC = 5
    CHAOS_WINDOW_SEC = 300
    CHAOS_DURATION_SEC = 10
    SURVIVAL_POINTS = 10
    SURVIVAL_INTERVAL_SEC = 60
    IMMUNITY_UNLOCK_THRESHOLD = 50
    IMMUNITY_ACTIVATION_COST = 0
    IMMUNITY_DRAIN_RATE = 1
    IMMUNITY_FINAL_PHASE_MULTIPLIER = 10
    MIN_PLAYERS = 2
    TIMER_HEARTBEAT_SEC = 0


class FakeClock:
    """Manually advanced stand-in for time.time."""

    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class RecordingSink:
    """Event sink that keeps everything it is asked to deliver."""

    def __init__(self):
        self.events = []

    def publish(self, session_id, event, payload):
        self.events.append({'session_id': session_id, 'player_id': None, 'name': event, 'payload': payload})

    def publish_to(self, session_id, player_id, event, payload):
        self.events.append({'session_id': session_id, 'player_id': player_id, 'name': event, 'payload': payload})

    def names(self):
        return [e['name'] for e in self.events]

    def named(self, event):
        return [e for e in self.events if e['name'] == event]

    def clear(self):
        self.events = []


def setup_game(registry, settings=None, seeker=True, boundary=True):
    """Lobby with a hider host and (optionally) an assigned seeker and boundary.

    Returns plain ids so tests never hold on to expired ORM objects.
    """
    game_session, host = triggers.create_session(registry, 'Hannah', settings=settings, player_key='host-key')
    ids = {'session': game_session.id, 'code': game_session.session_code, 'hider': host.id}
    if seeker:
        other = triggers.join_session(registry, game_session.session_code, 'Sam', player_key='seeker-key')
        triggers.assign_seeker(registry, game_session.id, other.id)
        ids['seeker'] = other.id
    if boundary:
        triggers.set_boundary(registry, game_session.id, BOUNDARY)
    return ids


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import manhunt.models  # noqa: F401
        db.create_all()
        yield application
        get_registry(application).stop_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def registry(flask_app, clock, sink):
    reg = get_registry(flask_app)
    reg.clock = clock
    reg.sink = sink
    return reg


@pytest.fixture()
def game(registry):
    return setup_game(registry)


@pytest.fixture()
def started(registry, game):
    """A running session; ticks are driven by hand through ``loop.tick()``."""
    triggers.start_session(registry, game['session'])
    game['loop'] = registry.get(game['session'])
    return game


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
