import os
import sys
import time
import pytest

# Ensure the backend root (containing the `pokerroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from pokerroom import create_app, db, socketio
from pokerroom.models import Participant, Room, Story
from pokerroom.services import registry
from pokerroom.services.gatekeeper import ConnectionContext


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CONSENSUS_THRESHOLD = 66.7
    DEFAULT_CONFIDENCE = 3
    DEFAULT_DECK_TYPE = 'fibonacci'
    DEFAULT_TIMER_SEC = 60
    MAX_PARTICIPANTS = 30
    ROOM_RETENTION_DAYS = 7
    AUTO_REVEAL_ON_EXPIRY = True
    TIMER_HEARTBEAT_SEC = 0


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, room_code, event, payload):
        self.events.append((room_code, event, payload))

    def names(self):
        return [e[1] for e in self.events]

    def of(self, name):
        return [payload for _, event, payload in self.events if event == name]

    def clear(self):
        self.events.clear()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import pokerroom.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def events():
    return EventRecorder()


@pytest.fixture()
def coordinator(flask_app, clock, events):
    coord = flask_app.extensions['voting_coordinator']
    coord.clock = clock
    coord.subscribe(events)
    return coord


def make_room(code='ABC123', host_id='host', host_name='Hana', online=False):
    now = time.time()
    room = Room(code=code, name='Sprint 42', host_id=host_id,
                created_at=now, last_activity=now, expires_at=now + 3600)
    room.settings = {'deck_type': 'fibonacci', 'custom_deck': [], 'timer_duration': 60}
    room.participants.append(Participant(user_id=host_id, display_name=host_name, role='host',
                                         is_online=online, joined_at=now, last_activity=now))
    db.session.add(room)
    db.session.commit()
    return room


def add_story(room, title='S1'):
    story = Story(room_code=room.code, title=title, status='backlog', created_by=room.host_id)
    db.session.add(story)
    db.session.commit()
    return story


def ctx_for(room_code, user_id, display_name=None):
    return ConnectionContext(user_id=user_id, room_code=room_code, display_name=display_name or user_id.title())


@pytest.fixture()
def room(flask_app):
    return make_room()


@pytest.fixture()
def story(room):
    return add_story(room)


@pytest.fixture()
def host(room):
    return ctx_for(room.code, 'host', 'Hana')


@pytest.fixture()
def voters(room):
    """Four online participants: alice, bob, carol and dave."""
    ctxs = []
    for user_id in ('alice', 'bob', 'carol', 'dave'):
        registry.join_room(room.code, user_id, user_id.title())
        ctxs.append(ctx_for(room.code, user_id))
    return ctxs


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
