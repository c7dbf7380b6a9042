from datetime import timedelta

import pytest

from harecame import create_app
from harecame.auth import generate_admin_token, reset_failed_attempts
from harecame.config import TestingConfig
from harecame.models import db, utcnow
from harecame.security import reset_rate_limits
from harecame.services import analytics, broadcast, cameras, events, switchover


@pytest.fixture(autouse=True)
def _reset_process_state():
    reset_rate_limits()
    reset_failed_attempts()
    analytics.performance_stats.reset()
    with broadcast._subscribers_lock:
        broadcast._subscribers.clear()
    switchover._event_locks.clear()
    yield


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """App on a SQLite file, for tests where several threads hit the database"""
    config = type('FileDatabaseConfig', (TestingConfig,), {'DATABASE_URL': f'sqlite:///{tmp_path / "harecame.db"}'})
    app = create_app(config)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    """App context for calling services directly"""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_token(app):
    with app.app_context():
        return generate_admin_token('admin')


def auth_header(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def create_event_via_api(client):
    """POST an event; returns (event_dict, organizer_token)"""
    def _create(title='Sports Day'):
        response = client.post('/api/events', json={'title': title})
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body['data'], body['organizerToken']
    return _create


@pytest.fixture
def join_via_api(client):
    """Join an event as a camera; returns the join response data"""
    def _join(event_id, participant_id, name=None):
        payload = {'participantId': participant_id}
        if name:
            payload['participantName'] = name
        response = client.post(f'/api/events/{event_id}/join', json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['data']
    return _join


@pytest.fixture
def make_event(ctx):
    def _make(title='Sports Day'):
        return events.create_event(title)
    return _make


@pytest.fixture
def make_camera(ctx):
    """Create a connection whose joined_at is offset seconds after a fixed base"""
    base = utcnow() - timedelta(hours=1)

    def _make(event, participant_id, offset=0):
        camera = cameras.create_connection(event, participant_id, participant_name=participant_id)
        camera.joined_at = base + timedelta(seconds=offset)
        db.session.commit()
        switchover.handle_camera_joined(camera)
        return camera
    return _make


def go_live(camera, stream_quality=None):
    """Report the camera as streaming the way the status endpoint does"""
    previous = camera.status
    cameras.update_status(camera, 'active', stream_quality)
    return switchover.apply_status_change(camera, previous, stream_quality)


def go_offline(camera, status='inactive'):
    previous = camera.status
    cameras.update_status(camera, status)
    return switchover.apply_status_change(camera, previous)


def drain(q):
    messages = []
    while not q.empty():
        messages.append(q.get_nowait())
    return messages
