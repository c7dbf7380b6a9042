from datetime import datetime, timedelta

import pytest

from harecame.auth import generate_viewer_token
from harecame.services import analytics

from conftest import auth_header

IPHONE = 'Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148'
IPAD = 'Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) Mobile/15E148'
DESKTOP = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0'


class Entry:
    """Stand-in for an EventLog row"""
    _counter = 0

    def __init__(self, seconds, details):
        Entry._counter += 1
        self.id = f'log-{Entry._counter:04d}'
        self.created_at = datetime(2026, 10, 18, 9, 0) + timedelta(seconds=seconds)
        self.details = details


@pytest.mark.parametrize('user_agent, expected', [
    (IPHONE, 'mobile'),
    (IPAD, 'tablet'),
    (DESKTOP, 'desktop'),
    (None, 'desktop'),
])
def test_classify_device(user_agent, expected):
    assert analytics.classify_device(user_agent) == expected


def test_summarize_interactions():
    entries = [
        Entry(0, {'action': 'view_start', 'viewerId': 'v1', 'userAgent': IPHONE, 'quality': '720p'}),
        Entry(5, {'action': 'view_start', 'viewerId': 'v2', 'userAgent': DESKTOP, 'quality': '480p'}),
        Entry(6, {'action': 'chat_open', 'viewerId': 'v1'}),
        Entry(10, {'action': 'view_end', 'viewerId': 'v1', 'duration': 60000}),
        Entry(12, {'action': 'view_start', 'viewerId': 'v3', 'deviceType': 'tablet'}),
        Entry(20, {'action': 'quality_change', 'viewerId': 'v3', 'quality': '720p'}),
        Entry(30, {'action': 'view_end', 'viewerId': 'v2', 'duration': 120000}),
    ]

    # Order of the input does not matter
    summary = analytics.summarize_interactions(reversed(entries))

    assert summary['totalViewers'] == 3
    assert summary['peakViewers'] == 2
    assert summary['averageViewDuration'] == 90
    assert summary['chatEngagement'] == pytest.approx(33.3)
    assert summary['qualityDistribution'] == {'720p': pytest.approx(66.7), '480p': pytest.approx(33.3)}
    assert summary['deviceTypes'] == {
        'mobile': pytest.approx(33.3),
        'desktop': pytest.approx(33.3),
        'tablet': pytest.approx(33.3),
    }


def test_summarize_anonymous_clients():
    # Player and chat widgets report device details only, no viewer id
    entries = [
        Entry(0, {'action': 'view_start', 'userAgent': IPHONE, 'screenSize': '390x844', 'deviceType': 'mobile'}),
        Entry(3, {'action': 'view_start', 'userAgent': DESKTOP, 'screenSize': '1920x1080', 'deviceType': 'desktop'}),
        Entry(8, {'action': 'chat_open', 'userAgent': IPHONE, 'screenSize': '390x844', 'deviceType': 'mobile'}),
    ]

    summary = analytics.summarize_interactions(entries)

    assert summary['totalViewers'] == 2
    assert summary['peakViewers'] == 2
    assert summary['chatEngagement'] == 50
    assert summary['deviceTypes'] == {'mobile': 50, 'desktop': 50}


def test_chat_engagement_is_capped():
    entries = [Entry(0, {'action': 'view_start'})] + [Entry(i, {'action': 'chat_open'}) for i in range(1, 4)]

    assert analytics.summarize_interactions(entries)['chatEngagement'] == 100


def test_summarize_nothing():
    summary = analytics.summarize_interactions([])
    assert summary == {
        'totalViewers': 0,
        'peakViewers': 0,
        'averageViewDuration': 0,
        'chatEngagement': 0,
        'qualityDistribution': {},
        'deviceTypes': {},
    }


def test_performance_stats():
    stats = analytics.PerformanceStats()
    assert stats.record('LCP', 2000) is False
    assert stats.record('LCP', 5000) is True
    assert stats.record('custom', 1) is False

    snapshot = stats.snapshot()
    assert snapshot['averageMetrics'] == {'LCP': 3500, 'custom': 1}
    assert snapshot['sampleCount'] == 3
    assert snapshot['lastUpdated']


def test_interaction_endpoints(client, create_event_via_api):
    event, token = create_event_via_api()
    url = '/api/analytics/interactions'

    for body in (
        {'eventId': event['id'], 'action': 'view_start', 'metadata': {'viewerId': 'v1', 'userAgent': IPHONE}},
        {'eventId': event['id'], 'action': 'chat_open', 'metadata': {'viewerId': 'v1'}},
        {'eventId': event['id'], 'action': 'view_end', 'metadata': {'viewerId': 'v1', 'duration': 30000}},
    ):
        response = client.post(url, json=body)
        assert response.status_code == 200, response.get_json()

    assert client.post(url, json={'eventId': event['id'], 'action': 'dance'}).status_code == 400
    assert client.post(url, json={'eventId': 'bad', 'action': 'view_start'}).status_code == 400

    assert client.get(f"/api/analytics/events/{event['id']}").status_code == 401
    response = client.get(f"/api/analytics/events/{event['id']}", headers=auth_header(token))
    data = response.get_json()['data']
    assert data['eventId'] == event['id']
    assert data['totalViewers'] == 1
    assert data['peakViewers'] == 1
    assert data['averageViewDuration'] == 30
    assert data['chatEngagement'] == 100
    assert data['deviceTypes'] == {'mobile': 100}


def test_performance_endpoints(client, admin_token):
    sample = {
        'name': 'LCP',
        'value': 4500,
        'id': 'v3-1',
        'timestamp': 1760000000000,
        'url': 'https://harecame.example/events/x',
        'userAgent': DESKTOP,
    }
    assert client.post('/api/analytics/performance', json=sample).status_code == 200
    assert client.post('/api/analytics/performance', json=dict(sample, value=-1)).status_code == 400
    assert client.post('/api/analytics/performance', json=dict(sample, url='nope')).status_code == 400

    response = client.get('/api/analytics/performance', headers=auth_header(admin_token))
    data = response.get_json()['data']
    assert data['averageMetrics'] == {'LCP': 4500}
    assert data['sampleCount'] == 1


def test_error_reports(client):
    report = {'message': 'LiveKit connection failed', 'errorId': 'err-1', 'url': 'https://harecame.example'}
    response = client.post('/api/errors', json=report)
    body = response.get_json()
    assert response.status_code == 200
    assert body['errorId'] == 'err-1'
    assert body['critical'] is True

    response = client.post('/api/errors', json={'message': 'Oops', 'errorId': 'err-2'})
    assert response.get_json()['critical'] is False

    assert client.post('/api/errors', json={'message': 'Oops'}).status_code == 400


def test_viewer_token_identifies_interactions(app, client, create_event_via_api):
    event, token = create_event_via_api()
    with app.app_context():
        viewer_token = generate_viewer_token('viewer-7', event['id'])
    url = '/api/analytics/interactions'

    for action in ('view_start', 'view_end', 'view_start', 'chat_open'):
        response = client.post(url, json={'eventId': event['id'], 'action': action},
                               headers=auth_header(viewer_token))
        assert response.status_code == 200

    data = client.get(f"/api/analytics/events/{event['id']}", headers=auth_header(token)).get_json()['data']
    assert data['totalViewers'] == 1
    assert data['chatEngagement'] == 100
