import itertools
import os
import sys
from datetime import datetime, timedelta

import pytest

# Ensure the backend root (containing the `relay` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from relay import create_app, db, socketio
from relay.models import Game, Season, SeasonStatus, Turn, TurnStatus
from relay.services.players import get_or_create_player


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ENABLE_SCHEDULER = False
    LOG_LEVEL = 'INFO'


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 5, 9, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, player_id, message):
        if self.fail:
            raise ConnectionError('chat gateway unavailable')
        self.sent.append((player_id, message))

    def of_type(self, kind):
        return [(pid, msg) for pid, msg in self.sent if msg['type'] == kind]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def flask_app(clock, notifier):
    application = create_app(TestConfig, clock=clock, notifier=notifier)
    with application.app_context():
        # Ensure models are imported so tables are created
        import relay.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def offering(flask_app):
    return flask_app.extensions['turn_offering']


@pytest.fixture()
def seasons(flask_app):
    return flask_app.extensions['season_service']


@pytest.fixture()
def scheduler(flask_app):
    return flask_app.extensions['timeout_scheduler']


@pytest.fixture()
def make_players(flask_app):
    counter = itertools.count(1)

    def _make(n):
        ids = []
        for _ in range(n):
            i = next(counter)
            ids.append(get_or_create_player(f'user-{i}', f'Player {i}').id)
        return ids
    return _make


@pytest.fixture()
def start_season(seasons, make_players):
    """Create a season with ``n`` players and activate it."""
    names = itertools.count(1)

    def _start(n=4, **options):
        ids = make_players(n)
        created = seasons.create_season(ids[0], f'Season {next(names)}', **options)
        assert created.ok, created.message
        season_id = created.season.id
        for pid in ids[1:]:
            assert seasons.join_season(season_id, pid).ok
        season = db.session.get(Season, season_id)
        if season.status != SeasonStatus.ACTIVE.value:
            activated = seasons.activate_season(season_id)
            assert activated.ok, activated.message
        return db.session.get(Season, season_id), ids
    return _start


def live_turn(game_id):
    """The game's current non-terminal turn, if any."""
    return (Turn.query.filter(Turn.game_id == game_id,
                              Turn.status.in_((TurnStatus.AVAILABLE.value,
                                               TurnStatus.OFFERED.value,
                                               TurnStatus.PENDING.value)))
            .order_by(Turn.turn_number.desc()).first())


def season_games(season_id):
    return Game.query.filter_by(season_id=season_id).order_by(Game.id).all()


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
