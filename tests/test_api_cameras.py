import re
import threading
import uuid

from conftest import auth_header


def _status_url(event_id, camera_id):
    return f'/api/events/{event_id}/cameras/{camera_id}/status'


def _report(client, joined, status, token=None, **extra):
    body = {'status': status}
    body.update(extra)
    return client.put(
        _status_url(joined['eventId'], joined['cameraConnectionId']),
        json=body,
        headers=auth_header(token or joined['authToken']),
    )


def test_join_event(client, create_event_via_api):
    event, _ = create_event_via_api()

    response = client.post(f"/api/events/{event['id']}/join", json={
        'participantId': 'cam-1',
        'participantName': 'Stage Left',
        'deviceInfo': {'userAgent': 'Mozilla/5.0 (iPhone)', 'platform': 'iOS'},
    })
    assert response.status_code == 201
    data = response.get_json()['data']

    assert data['eventId'] == event['id']
    assert data['roomName'] == event['livekitRoomName']
    assert data['roomToken'] and data['authToken']
    assert data['participantId'] == 'cam-1'
    assert data['event']['participationCode'] == event['participationCode']

    cams = client.get(f"/api/events/{event['id']}/cameras").get_json()['data']
    assert cams[0]['id'] == data['cameraConnectionId']
    assert cams[0]['status'] == 'connecting'
    assert cams[0]['deviceInfo'] == {'userAgent': 'Mozilla/5.0 (iPhone)', 'platform': 'iOS'}


def test_join_by_code_assigns_participant_id(client, create_event_via_api):
    event, _ = create_event_via_api()

    response = client.post('/api/events/join', json={
        'participationCode': event['participationCode'],
        'participantName': 'Phone',
    })
    assert response.status_code == 201
    data = response.get_json()['data']
    assert re.fullmatch(r'camera_\d+_[a-z0-9]{6}', data['participantId'])
    assert data['eventId'] == event['id']

    unknown = 'ZZZZZZ' if event['participationCode'] != 'ZZZZZZ' else 'YYYYYY'
    response = client.post('/api/events/join', json={'participationCode': unknown})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Invalid participation code'


def test_join_rules(app, client, create_event_via_api, join_via_api):
    event, token = create_event_via_api()
    url = f"/api/events/{event['id']}/join"

    assert client.post(f'/api/events/{uuid.uuid4()}/join', json={'participantId': 'x'}).status_code == 404
    assert client.post(url, json={}).status_code == 400

    joined = join_via_api(event['id'], 'cam-1')
    response = client.post(url, json={'participantId': 'cam-1'})
    assert response.status_code == 409

    # Once the first connection is gone the participant may rejoin
    _report(client, joined, 'active')
    _report(client, joined, 'inactive')
    assert client.post(url, json={'participantId': 'cam-1'}).status_code == 201

    client.put(f"/api/events/{event['id']}", json={'status': 'ended'}, headers=auth_header(token))
    response = client.post(url, json={'participantId': 'cam-2'})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Event has ended'


def test_join_rejects_when_camera_limit_reached(app, client, create_event_via_api, join_via_api):
    app.config['MAX_ACTIVE_CAMERAS'] = 2
    event, _ = create_event_via_api()
    for i in range(2):
        _report(client, join_via_api(event['id'], f'cam-{i}'), 'active')

    response = client.post(f"/api/events/{event['id']}/join", json={'participantId': 'cam-9'})
    assert response.status_code == 429


def test_join_rolls_back_when_media_token_fails(app, client, create_event_via_api):
    app.config['LIVEKIT_API_SECRET'] = ''
    event, _ = create_event_via_api()

    response = client.post(f"/api/events/{event['id']}/join", json={'participantId': 'cam-1'})
    assert response.status_code == 500
    assert client.get(f"/api/events/{event['id']}/cameras").get_json()['data'] == []


def test_status_update_drives_switchover(client, create_event_via_api, join_via_api):
    event, _ = create_event_via_api()
    first = join_via_api(event['id'], 'cam-1')
    second = join_via_api(event['id'], 'cam-2')

    response = _report(client, first, 'active', streamQuality={'resolution': '1920x1080', 'frameRate': 30})
    assert response.status_code == 200
    body = response.get_json()
    assert body['data']['status'] == 'active'
    assert body['data']['streamQuality']['frameRate'] == 30
    assert body['streamStatus']['currentActiveCamera'] == first['cameraConnectionId']

    body = _report(client, second, 'active').get_json()
    assert body['streamStatus']['currentActiveCamera'] == second['cameraConnectionId']
    assert body['streamStatus']['activeCameraCount'] == 2

    body = _report(client, second, 'inactive').get_json()
    assert body['streamStatus']['currentActiveCamera'] == first['cameraConnectionId']

    body = _report(client, first, 'error').get_json()
    assert body['streamStatus']['currentActiveCamera'] is None
    assert body['streamStatus']['isLive'] is False


def test_status_update_validation(client, create_event_via_api, join_via_api):
    event, _ = create_event_via_api()
    joined = join_via_api(event['id'], 'cam-1')

    response = _report(client, joined, 'streaming')
    assert response.status_code == 400
    assert 'status' in response.get_json()['details']

    response = _report(client, joined, 'active', streamQuality={'frameRate': 240})
    assert response.status_code == 400
    assert 'streamQuality.frameRate' in response.get_json()['details']

    response = _report(client, joined, 'active', streamQuality={'bitrate': 60000})
    assert response.status_code == 400


def test_status_update_permissions(client, create_event_via_api, join_via_api):
    event, organizer_token = create_event_via_api()
    other_event, _ = create_event_via_api('Other')
    first = join_via_api(event['id'], 'cam-1')
    second = join_via_api(event['id'], 'cam-2')
    foreign = join_via_api(other_event['id'], 'cam-x')

    assert client.put(_status_url(event['id'], first['cameraConnectionId']),
                      json={'status': 'active'}).status_code == 401

    # A camera may only report its own connection
    response = _report(client, first, 'active', token=second['authToken'])
    assert response.status_code == 403

    response = _report(client, first, 'active', token=foreign['authToken'])
    assert response.status_code == 403
    assert response.get_json()['error'] == 'Access denied for this event'

    assert _report(client, first, 'active', token=organizer_token).status_code == 200


def test_status_update_id_checks(client, create_event_via_api, join_via_api, admin_token):
    event, _ = create_event_via_api()
    other_event, _ = create_event_via_api('Other')
    foreign = join_via_api(other_event['id'], 'cam-x')

    response = client.put(_status_url(event['id'], 'nope'), json={'status': 'active'},
                          headers=auth_header(admin_token))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Invalid ID format'

    response = client.put(_status_url(event['id'], foreign['cameraConnectionId']), json={'status': 'active'},
                          headers=auth_header(admin_token))
    assert response.status_code == 404


def test_get_stream_status(client, create_event_via_api, join_via_api):
    event, _ = create_event_via_api()
    first = join_via_api(event['id'], 'cam-1')
    join_via_api(event['id'], 'cam-2')
    _report(client, first, 'active')

    response = client.get(f"/api/events/{event['id']}/status")
    body = response.get_json()
    assert response.status_code == 200
    assert body['data']['isLive'] is True
    assert body['data']['activeCameraCount'] == 1
    assert body['data']['totalCameraCount'] == 2
    assert body['data']['lastUpdated']
    assert [c['id'] for c in body['cameras']] == [first['cameraConnectionId']]


def test_manual_switch_via_stream_status(client, create_event_via_api, join_via_api):
    event, token = create_event_via_api()
    first = join_via_api(event['id'], 'cam-1')
    second = join_via_api(event['id'], 'cam-2')
    idle = join_via_api(event['id'], 'cam-3')
    _report(client, first, 'active')
    _report(client, second, 'active')
    url = f"/api/events/{event['id']}/status"

    response = client.put(url, json={'currentActiveCamera': first['cameraConnectionId'], 'streamHealth': 'good'},
                          headers=auth_header(token))
    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['currentActiveCamera'] == first['cameraConnectionId']
    assert data['streamHealth'] == 'good'

    response = client.put(url, json={'currentActiveCamera': idle['cameraConnectionId']}, headers=auth_header(token))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Camera is not streaming'

    response = client.put(url, json={'activeCameraCount': 11}, headers=auth_header(token))
    assert response.status_code == 400

    response = client.put(url, json={'streamHealth': 'good'}, headers=auth_header(first['authToken']))
    assert response.status_code == 403
    assert response.get_json()['error'] == 'Insufficient permissions for this operation'


def test_event_stream_sends_connected_frame(client, create_event_via_api):
    event, _ = create_event_via_api()

    response = client.get(f"/api/events/{event['id']}/stream", buffered=False)
    assert response.status_code == 200
    assert response.mimetype == 'text/event-stream'

    first_chunk = next(iter(response.response))
    if isinstance(first_chunk, bytes):
        first_chunk = first_chunk.decode()
    assert first_chunk.startswith('data: {"type":"connected"')
    response.close()

    assert client.get(f'/api/events/{uuid.uuid4()}/stream').status_code == 404


def test_source_reporting_connecting_hands_over(client, create_event_via_api, join_via_api):
    event, _ = create_event_via_api()
    first = join_via_api(event['id'], 'cam-1')
    second = join_via_api(event['id'], 'cam-2')
    _report(client, first, 'active')
    _report(client, second, 'active')

    body = _report(client, second, 'connecting').get_json()
    assert body['data']['status'] == 'connecting'
    assert body['streamStatus']['currentActiveCamera'] == first['cameraConnectionId']
    assert body['streamStatus']['activeCameraCount'] == 1

    body = _report(client, first, 'connecting').get_json()
    assert body['streamStatus']['currentActiveCamera'] is None
    assert body['streamStatus']['isLive'] is False


def test_stream_status_rejects_clearing_the_source(client, create_event_via_api, join_via_api):
    event, token = create_event_via_api()
    joined = join_via_api(event['id'], 'cam-1')
    _report(client, joined, 'active')
    url = f"/api/events/{event['id']}/status"

    response = client.put(url, json={'currentActiveCamera': None}, headers=auth_header(token))
    assert response.status_code == 400
    assert 'currentActiveCamera' in response.get_json()['details']

    data = client.get(url).get_json()['data']
    assert data['currentActiveCamera'] == joined['cameraConnectionId']


def _run_together(count, target):
    """Run target(i) on count threads released at the same moment"""
    barrier = threading.Barrier(count)
    results = [None] * count

    def run(i):
        barrier.wait()
        results[i] = target(i)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_concurrent_joins_of_one_participant(file_app):
    client = file_app.test_client()
    event = client.post('/api/events', json={'title': 'Relay'}).get_json()['data']
    url = f"/api/events/{event['id']}/join"

    codes = _run_together(6, lambda i: file_app.test_client().post(url, json={'participantId': 'cam-1'}).status_code)

    assert sorted(codes) == [201, 409, 409, 409, 409, 409]
    assert len(client.get(f"/api/events/{event['id']}/cameras").get_json()['data']) == 1


def test_concurrent_status_reports(file_app):
    client = file_app.test_client()
    created = client.post('/api/events', json={'title': 'Relay'}).get_json()
    event, token = created['data'], created['organizerToken']
    joined = []
    for i in range(4):
        response = client.post(f"/api/events/{event['id']}/join", json={'participantId': f'cam-{i}'})
        joined.append(response.get_json()['data'])

    codes = _run_together(4, lambda i: _report(file_app.test_client(), joined[i], 'active').status_code)
    assert codes == [200] * 4

    data = client.get(f"/api/events/{event['id']}/status").get_json()['data']
    assert data['activeCameraCount'] == 4
    assert data['currentActiveCamera'] in {j['cameraConnectionId'] for j in joined}

    logs = client.get(f"/api/events/{event['id']}/logs?logType=stream_switched",
                      headers=auth_header(token)).get_json()['data']
    assert len(logs) == 4
    # The switches form one chain that ends at the current source
    targets = {log['metadata']['toCamera'] for log in logs}
    sources = {log['metadata']['fromCamera'] for log in logs}
    assert targets == {j['cameraConnectionId'] for j in joined}
    assert sources == (targets - {data['currentActiveCamera']}) | {None}
